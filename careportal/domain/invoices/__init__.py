"""Invoices domain - invoice issuing and lifecycle"""
