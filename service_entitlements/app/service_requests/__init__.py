"""
Service request (waiter call) package.

Implements the public write path customers reach by scanning a table's QR
code: validate the table, pass the cooldown gate, record the request and
flag the table for service.
"""
