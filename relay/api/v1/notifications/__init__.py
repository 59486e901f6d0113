"""Notification dispatch and history API"""
