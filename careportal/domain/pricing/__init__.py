"""Pricing domain - service catalog and the rule-based pricing engine"""
