# email_system/templates.py
"""
Notification email templates.
"""
from typing import Any, Dict, Tuple

TEMPLATES = {
    'payout_completed': {
        'subject': "Your payout of {amount} is on its way",
        'text': "We sent {amount} to your payout account.\nReference: {reference}",
        'html': "<p>We sent <b>{amount}</b> to your payout account.</p><p>Reference: {reference}</p>",
    },
    'reward_free_product': {
        'subject': "Phase {tier} reached: a free product is waiting",
        'text': "You qualified for phase {tier} in {period}. Your next order includes one free product.",
        'html': "<p>You qualified for <b>phase {tier}</b> in {period}.</p>"
                "<p>Your next order includes one free product.</p>",
    },
    'reward_store_credit': {
        'subject': "Phase {tier} reached: {credit} store credit",
        'text': "You qualified for phase {tier} in {period} and received {credit} in store credit.",
        'html': "<p>You qualified for <b>phase {tier}</b> in {period}</p>"
                "<p>and received <b>{credit}</b> in store credit.</p>",
    },
}


def render_template(key: str, variables: Dict[str, Any]) -> Tuple[str, str, str]:
    """
    Render a template.

    Returns:
        Tuple (subject, html_body, text_body)

    Raises:
        KeyError: Unknown template or missing variable
    """
    template = TEMPLATES[key]
    return (
        template['subject'].format(**variables),
        template['html'].format(**variables),
        template['text'].format(**variables),
    )
