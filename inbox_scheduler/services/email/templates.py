"""
Fixed email bodies sent by the assistant outside of agent replies.
"""

import random

from inbox_scheduler.config import settings

ONBOARDING_EMAIL_SUBJECTS = [
    "Welcome to {product} - Let's get you started",
    "Let's get you up and running with {product}",
    "It's time to make {product} yours",
    "Just a few clicks away from getting started",
    "Come on in - we saved you the best seat!",
    "Psst... your {product} journey is waiting",
]

ONBOARDING_EMAIL_TEMPLATE = """
Hi,

Welcome to {product}! We're thrilled to have you on board.

This is {founder}. Quick sign-up, and you'd be all set.

{signup_url}

As you explore, please do not hesitate to reach out to me directly.

Best,
{founder}
"""

ONBOARDING_EMAIL_REPLY_TEMPLATE = """
Hey,

I noticed this email isn't in our system yet, so I'm guessing you haven't had a chance to check out {product} properly.

No worries at all - happens all the time! I'd love to get you set up so you can see what we're all about.

Just hop over here when you get a sec

{signup_url}

Cheers,
{founder}
"""

USER_REPLYING_TO_OLDER_EMAIL_TEMPLATE = """
Hi,

Seems you're trying to reply to an older email in the thread. Instead, consider replying to the latest email in the thread, or creating a new thread altogether.

"""

NON_USER_REPLYING_TO_OLDER_EMAIL_TEMPLATE = """
Hi,

This conversation is no longer being handled by the assistant. Please reach out to the organizer directly, or start a new email thread.

"""

AGENT_FAILURE_TEMPLATE = """
Hi,

Thanks for your email. I wasn't able to process this request just now. Please try again in a little while, or reply with any additional details.

"""


def _context() -> dict:
    return {
        "product": settings.PRODUCT_NAME,
        "founder": settings.FOUNDER_NAME,
        "signup_url": settings.SIGNUP_URL,
    }


def random_onboarding_subject() -> str:
    return random.choice(ONBOARDING_EMAIL_SUBJECTS).format(**_context())


def onboarding_email() -> str:
    return ONBOARDING_EMAIL_TEMPLATE.format(**_context())


def onboarding_reply() -> str:
    return ONBOARDING_EMAIL_REPLY_TEMPLATE.format(**_context())


def with_signature(body: str, signature: str) -> str:
    return f"{body.rstrip()}\n\n{signature}"
