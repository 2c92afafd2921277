"""Reservation lifecycle services"""
