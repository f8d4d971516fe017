"""Bookings domain - scheduling provider ingestion and booking lifecycle"""
