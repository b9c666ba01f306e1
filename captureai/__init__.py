"""
CaptureAI Backend - License Key Service
=======================================

A FastAPI backend for the CaptureAI browser extension that provides:
- License key accounts (free and pro tiers)
- Per-tier usage quotas and request rate limiting
- An authenticated proxy to the AI gateway with cost metering
- Stripe-driven subscription upgrades
"""

__version__ = "1.0.0"
