from django.dispatch import Signal

from .resolver import CoefficientResolver

# Sent for every fallback/failure of the process-wide resolver, kwargs: event (LookupEvent)
coefficient_lookup_event = Signal()


def send_lookup_event(event):
    coefficient_lookup_event.send(sender=CoefficientResolver, event=event)
