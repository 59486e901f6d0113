"""Core infrastructure: configuration, database, queue transport, security"""
