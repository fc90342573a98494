"""
onetime/scavenger.py -- Periodic removal of expired one-time tokens.

A ScavengerTask owns one token field of the internal SCIM extension. Each run
searches every user that has the field present, and for each expired token
deletes the field (plus any companion fields, e.g. the pending new email
address that belongs to an email confirmation token) with a single PATCH.

Failure policy:
  - Search fails to connect -> warn, skip this run entirely.
  - One user's update fails  -> warn, carry on with the rest. The token is
    still there, so the next run tries again.
  - Stored value unparseable -> warn, skip that user.

Scheduling is a fixed delay: run_periodically() waits for the first delay,
runs, then sleeps `interval` between the end of one run and the start of the
next. The blocking SCIM calls run in a worker thread via asyncio.to_thread so
the event loop keeps serving requests.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from core.config import Settings
from onetime.token import OneTimeToken
from scim.client import SCIMClient
from scim.errors import ConnectionInitializationError, SCIMError
from scim.resources import PatchBuilder, extension_path, get_extension_field

logger = logging.getLogger("selfadmin.scavenger")


class ScavengerTask:
    """Purges expired tokens stored in `<urn>:<token_field>`.

    Usage:
        task = ScavengerTask(client, timedelta(hours=24), urn, "emailConfirmToken", "tempMail",
                             name="email-confirmation")
        purged = task.run()
    """

    def __init__(
        self,
        scim_client: SCIMClient,
        timeout: timedelta,
        urn: str,
        token_field: str,
        *fields_to_delete: str,
        name: str = "",
    ) -> None:
        self.scim_client = scim_client
        self.timeout = timeout
        self.urn = urn
        self.token_field = token_field
        self.fields_to_delete = tuple(fields_to_delete)
        self.name = name or token_field

    @property
    def filter(self) -> str:
        return f"{extension_path(self.urn, self.token_field)} pr"

    def run(self) -> int:
        """Run one sweep. Returns the number of users whose token was purged."""
        query = self.filter
        try:
            # Materialize before patching: purging shrinks the result set and
            # would shift later pages under a live iterator.
            users = list(self.scim_client.iter_users(query))
        except ConnectionInitializationError as exc:
            logger.warning("Failed to search for users (%s): %s", query, exc)
            return 0

        purged = 0
        for user in users:
            user_id = user.get("id", "")
            stored = get_extension_field(user, self.urn, self.token_field)
            try:
                token = OneTimeToken.from_string(stored)
            except ValueError as exc:
                logger.warning("Skipping user %s, unreadable %s: %s", user_id, self.token_field, exc)
                continue

            if not token.is_expired(self.timeout):
                continue

            try:
                self.scim_client.update_user(user_id, self._build_patch())
            except SCIMError as exc:
                logger.warning("Failed to update user %s: %s", user_id, exc)
                continue
            purged += 1

        if purged:
            logger.info("Scavenger %s purged %d expired token(s)", self.name, purged)
        return purged

    def _build_patch(self) -> dict:
        builder = PatchBuilder().delete_extension_field(self.urn, self.token_field)
        for field_name in self.fields_to_delete:
            if field_name:
                builder.delete_extension_field(self.urn, field_name)
        return builder.build()


async def run_periodically(task: ScavengerTask, start_delay: timedelta, interval: timedelta) -> None:
    """Run task forever with a fixed delay between runs.

    Started with asyncio.create_task() in the lifespan. CancelledError from
    task.cancel() during shutdown propagates out of asyncio.sleep and unwinds
    the coroutine. Any other error from a run is logged and the schedule
    continues.
    """
    await asyncio.sleep(start_delay.total_seconds())
    while True:
        try:
            await asyncio.to_thread(task.run)
        except Exception:
            logger.exception("Scavenger %s run failed", task.name)
        await asyncio.sleep(interval.total_seconds())


def build_scavengers(settings: Settings, scim_client: SCIMClient) -> list[ScavengerTask]:
    """Create one scavenger per token field of the internal extension."""
    urn = settings.scim_extension_urn
    return [
        ScavengerTask(
            scim_client,
            settings.activation_token_timeout,
            urn,
            settings.activation_token_field,
            name="activation",
        ),
        ScavengerTask(
            scim_client,
            settings.one_time_password_timeout,
            urn,
            settings.one_time_password_field,
            name="one-time-password",
        ),
        ScavengerTask(
            scim_client,
            settings.confirmation_token_timeout,
            urn,
            settings.confirmation_token_field,
            settings.temp_email_field,
            name="email-confirmation",
        ),
    ]
