"""Outbound integrations - notification port and payment gateway client"""
