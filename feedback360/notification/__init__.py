"""Notification delivery package.

Groups assignment outcomes per evaluator into notification jobs, queues
them for a background worker, and delivers them via SMTP email.  Delivery
happens after the assignment transaction has committed and never affects
the API response.
"""
