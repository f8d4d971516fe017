"""Care portal booking, payment and invoice service"""
