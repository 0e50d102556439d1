"""
Settlement app: payment authorization and capture, escrow release gated on
service completion, time-windowed refunds and technician payouts.
"""
