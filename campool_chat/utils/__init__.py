"""Campool Chat Utilities Package"""
