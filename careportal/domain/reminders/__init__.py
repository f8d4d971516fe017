"""Reminders domain - time-window notification milestones"""
