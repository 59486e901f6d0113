"""Notification relay service"""
