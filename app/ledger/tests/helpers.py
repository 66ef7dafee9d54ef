"""Small helpers shared by ledger test modules."""

import contextlib


def reload(instance):
    """
    Fetch a fresh copy of a model instance.

    Payment and Refund status fields are protected, so refresh_from_db()
    cannot reload them in place.
    """
    return type(instance).objects.get(pk=instance.pk)


def no_lock(key):
    """Lock factory that serializes nothing."""
    return contextlib.nullcontext()
