"""
Sync Module - offline-first client

A local replica, a FIFO outbox of pending mutations and the engine that
decides between calling the server and queueing locally.
"""
