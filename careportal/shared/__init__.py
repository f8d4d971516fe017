"""Shared errors and validation helpers"""
