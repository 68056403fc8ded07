"""Call-session negotiation: the engine, its buffers and the platform seams it drives.

Relay messages, transport callbacks and user commands all become events on one
queue; see `calls.engine`.
"""
