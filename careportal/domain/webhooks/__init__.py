"""Webhooks domain - signed payment provider callbacks"""
