"""Row-level SQL for the article and resource tables.

Functions take the connection to run on, so callers decide whether a call
joins an open transaction.
"""
