"""FastAPI surface for the referral dashboard."""
