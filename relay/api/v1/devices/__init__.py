"""Devices API"""
