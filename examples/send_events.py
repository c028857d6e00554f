#!/usr/bin/env python3
"""Track a few actions outside of a web request. Needs CALQ_WRITE_KEY set."""
from calq import CalqClient, create_anonymous_user_id
from calq.config import settings
from calq.logging_config import configure_logging


def main():
    configure_logging()
    with CalqClient(create_anonymous_user_id(), settings.write_key) as calq:
        calq.track("Example Script Run", {"source": "send_events.py"})
        calq.identify("example-user")
        calq.track_sale("Example Purchase", {"Item": "XS T-Shirt"}, "USD", 9.99)
        calq.profile({"$email": "example@notarealemail.com"})
    print("Sent actions for", calq.actor)


if __name__ == "__main__":
    main()
