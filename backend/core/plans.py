"""
Plan configuration for subscription tiers.

This module is the single source of truth for plan limits and features.
It lives in core/ so both service and API layers can import from it
without creating circular dependencies.
"""

# Prompts accepted per analysis request (all tiers)
MAX_PROMPTS_PER_ANALYSIS = 10

# Active API keys a single account may hold
MAX_ACTIVE_API_KEYS = 5

# Plan configuration with features and limits
PLANS = {
    "free": {
        "name": "Free",
        "price_monthly": 0,
        "features": [
            "1 analysis per month",
            "Simulated demo results",
            "Citation rate overview",
        ],
        "limits": {
            "analyses_per_month": 1,
            "prompts_per_analysis": 3,
            "api_access": False,
            "real_analysis": False,
        },
    },
    "trial": {
        "name": "Free Trial",
        "price_monthly": 0,
        "features": [
            "3 analyses during the trial",
            "Simulated demo results",
            "Competitor overview",
        ],
        "limits": {
            "analyses_per_month": 3,
            "prompts_per_analysis": 5,
            "api_access": False,
            "real_analysis": False,
        },
    },
    "starter": {
        "name": "Starter",
        "price_monthly": 29,
        "features": [
            "10 analyses per month",
            "Live citation checks across AI assistants",
            "Competitor tracking",
            "Trend history",
        ],
        "limits": {
            "analyses_per_month": 10,
            "prompts_per_analysis": MAX_PROMPTS_PER_ANALYSIS,
            "api_access": False,
            "real_analysis": True,
        },
    },
    "professional": {
        "name": "Professional",
        "price_monthly": 99,
        "features": [
            "50 analyses per month",
            "Live citation checks across AI assistants",
            "Competitor tracking",
            "Trend history",
            "Priority support",
        ],
        "limits": {
            "analyses_per_month": 50,
            "prompts_per_analysis": MAX_PROMPTS_PER_ANALYSIS,
            "api_access": False,
            "real_analysis": True,
        },
    },
    "enterprise": {
        "name": "Enterprise",
        "price_monthly": 299,
        "features": [
            "400 analyses per month",
            "Live citation checks across AI assistants",
            "Competitor tracking",
            "Trend history",
            "API access",
            "Dedicated support",
        ],
        "limits": {
            "analyses_per_month": 400,
            "prompts_per_analysis": MAX_PROMPTS_PER_ANALYSIS,
            "api_access": True,
            "real_analysis": True,
        },
    },
}

# Tiers that can be purchased through checkout
PURCHASABLE_PLANS = ("starter", "professional", "enterprise")


def get_plan(tier: str) -> dict:
    """Plan definition for a tier, falling back to free for unknown values."""
    return PLANS.get(tier, PLANS["free"])


def get_plan_limit(tier: str, limit: str):
    """Single limit value for a tier."""
    return get_plan(tier)["limits"][limit]
