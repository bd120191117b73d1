"""
Onboarding package.

Side effects performed the first time an account subscribes: manage
subscription, sandbox profile, sandbox service and welcome message.
"""

from .workflow import OnboardingStep, OnboardingWorkflow, generate_fake_fiscal_code

__all__ = ["OnboardingStep", "OnboardingWorkflow", "generate_fake_fiscal_code"]
