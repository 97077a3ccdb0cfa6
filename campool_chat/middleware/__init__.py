"""Campool Chat Middleware Package"""
