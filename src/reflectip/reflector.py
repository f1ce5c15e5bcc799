# src/reflectip/reflector.py
"""
Race orchestrator for reflectip.

Queries every oracle of a set concurrently and either returns the first
address obtained or collects all of them. A failing oracle only costs the time
it took to fail; it never aborts the overall call.
"""

import asyncio
import functools
import logging
import random
import socket
import ssl
from collections.abc import AsyncIterator, Iterable
from contextlib import aclosing
from typing import Optional

from . import stun, tls_http
from .consensus import consensus
from .network import check_family, family_name
from .oracles import OracleDescriptor, OracleSet, Transport
from .parsers import IPAddress, IPAddressInfo
from .robustness import (
    InvalidArgumentError,
    MalformedResponseError,
    NoConsensusError,
    ReflectionError,
    ReflectionTimeoutError,
    log_with_context,
)

logger = logging.getLogger(__name__)

# Failures expected from a misbehaving or unreachable oracle
ORACLE_ERRORS = (
    ReflectionError,
    OSError,
    ssl.SSLError,
    asyncio.TimeoutError,
    asyncio.IncompleteReadError,
    asyncio.LimitOverrunError,
    UnicodeError,
)


class Reflector:
    """Races oracle queries and aggregates their answers."""

    def __init__(
        self,
        buffer_size: int = tls_http.DEFAULT_BUFFER_SIZE,
        stun_send_timeout: float = stun.DEFAULT_SEND_TIMEOUT,
        stun_receive_timeout: float = stun.DEFAULT_RECEIVE_TIMEOUT,
        rng: Optional[random.Random] = None,
        ssl_context: Optional[ssl.SSLContext] = None,
        user_agent: str = tls_http.USER_AGENT,
    ):
        self.buffer_size = buffer_size
        self.stun_send_timeout = stun_send_timeout
        self.stun_receive_timeout = stun_receive_timeout
        self.rng = rng or random.Random()
        self.ssl_context = ssl_context
        self.user_agent = user_agent
        # losers of a race, kept referenced until they finish
        self._background: set[asyncio.Task] = set()

    async def query(self, oracle: OracleDescriptor, family: int = socket.AF_INET) -> Optional[IPAddress]:
        """Ask a single oracle; returns None when it answered without an address."""
        check_family(family)
        if oracle.transport is Transport.UDP_STUN:
            mapped = await stun.communicate(
                oracle, family, self.stun_send_timeout, self.stun_receive_timeout, rng=self.rng
            )
            return mapped.address

        stream = await tls_http.communicate(
            oracle, family, self.buffer_size, ssl_context=self.ssl_context, user_agent=self.user_agent
        )
        if stream.is_empty:
            return None
        async with stream:
            return await oracle.parser(stream)

    async def _bounded(self, factory, oracle: OracleDescriptor, timeout: Optional[float]):
        if not timeout:
            return await factory()
        try:
            return await asyncio.wait_for(factory(), timeout)
        except ReflectionTimeoutError:
            raise
        except asyncio.TimeoutError:
            # only reached when our own deadline fired; caller cancellation
            # surfaces as CancelledError instead
            raise ReflectionTimeoutError(
                f"{oracle.name} did not answer within {timeout}s", {"endpoint": oracle.endpoint}
            ) from None

    def _validate(self, oracles: Iterable[OracleDescriptor], family: int) -> OracleSet:
        if oracles is None:
            raise InvalidArgumentError("Please specify one or more oracles to use.")
        check_family(family)
        oracle_set = oracles if isinstance(oracles, OracleSet) else OracleSet(oracles)
        if len(oracle_set) < 1:
            raise InvalidArgumentError("Please specify one or more oracles to use.")
        return oracle_set

    def _spawn(
        self, oracles: OracleSet, family: int, timeout: Optional[float]
    ) -> dict[asyncio.Task, OracleDescriptor]:
        tasks = {}
        for oracle in oracles:
            query = functools.partial(self.query, oracle, family)
            task = asyncio.create_task(self._bounded(query, oracle, timeout), name=f"reflect:{oracle.name}")
            tasks[task] = oracle
        return tasks

    def _outcome(self, task: asyncio.Task, oracle: OracleDescriptor) -> Optional[IPAddress]:
        if task.cancelled():
            return None
        exc = task.exception()
        if exc is None:
            address = task.result()
            if address is None:
                logger.debug(f"{oracle.name} returned no address")
            return address
        context = {"oracle": oracle.name, "endpoint": oracle.endpoint, "error_type": type(exc).__name__}
        if isinstance(exc, ORACLE_ERRORS):
            log_with_context(f"Oracle {oracle.name} failed: {exc}", "debug", context)
        else:
            log_with_context(f"Oracle {oracle.name} raised unexpectedly: {exc!r}", "warning", context)
        return None

    async def _completions(
        self, tasks: dict[asyncio.Task, OracleDescriptor], cancel_event: Optional[asyncio.Event]
    ) -> AsyncIterator[tuple[OracleDescriptor, Optional[IPAddress]]]:
        """Yield (oracle, address) pairs in completion order.

        This is the only place the pending set is touched, so completions are
        drained one at a time.
        """
        remaining = set(tasks)
        waiter = asyncio.create_task(cancel_event.wait()) if cancel_event is not None else None
        try:
            while remaining:
                watch = remaining | {waiter} if waiter is not None else remaining
                done, _ = await asyncio.wait(watch, return_when=asyncio.FIRST_COMPLETED)
                if waiter is not None and waiter in done:
                    raise asyncio.CancelledError("reflection cancelled by caller")
                for task in done:
                    remaining.discard(task)
                    yield tasks[task], self._outcome(task, tasks[task])
        finally:
            if waiter is not None:
                waiter.cancel()

    def _cancel(self, tasks: Iterable[asyncio.Task]) -> None:
        for task in tasks:
            if not task.done():
                task.cancel()
            self._detach(task)

    def _detach(self, task: asyncio.Task) -> None:
        self._background.add(task)
        task.add_done_callback(self._reap)

    def _reap(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Background query {task.get_name()} failed: {task.exception()}")

    async def reflect(
        self,
        oracles: Iterable[OracleDescriptor],
        family: int = socket.AF_INET,
        per_query_timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> IPAddress:
        """Return the first address any oracle reports.

        The remaining queries keep running in the background and their results
        are discarded. Raises NoConsensusError when no oracle produced an
        address.
        """
        oracle_set = self._validate(oracles, family)
        tasks = self._spawn(oracle_set, family, per_query_timeout)
        try:
            async with aclosing(self._completions(tasks, cancel_event)) as completions:
                async for oracle, address in completions:
                    if address is not None:
                        log_with_context(
                            f"{oracle.name} reflected {address}",
                            "info",
                            {"oracle": oracle.name, "family": family_name(family)},
                        )
                        for task in tasks:
                            self._detach(task)
                        return address
        except BaseException:
            self._cancel(tasks)
            raise

        raise NoConsensusError(context={"oracles": [o.name for o in oracle_set], "family": family_name(family)})

    async def reflect_all(
        self,
        oracles: Iterable[OracleDescriptor],
        family: int = socket.AF_INET,
        per_query_timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> dict[str, IPAddress]:
        """Wait for every oracle and map endpoint to address for each success.

        An empty mapping is a valid result.
        """
        oracle_set = self._validate(oracles, family)
        tasks = self._spawn(oracle_set, family, per_query_timeout)
        results: dict[str, IPAddress] = {}
        try:
            async with aclosing(self._completions(tasks, cancel_event)) as completions:
                async for oracle, address in completions:
                    if address is not None:
                        results[oracle.endpoint] = address
        except BaseException:
            self._cancel(tasks)
            raise

        logger.info(f"{len(results)} of {len(oracle_set)} oracles reported an address")
        return results

    async def reflect_consensus(
        self,
        oracles: Iterable[OracleDescriptor],
        family: int = socket.AF_INET,
        per_query_timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> IPAddress:
        """Majority answer across every oracle that reported an address."""
        results = await self.reflect_all(oracles, family, per_query_timeout, cancel_event)
        address = consensus(results)
        if address is None:
            raise NoConsensusError(context={"family": family_name(family)})
        return address

    async def reflect_info(
        self,
        oracle: OracleDescriptor,
        family: int = socket.AF_INET,
        per_query_timeout: Optional[float] = None,
    ) -> IPAddressInfo:
        """Query an oracle that publishes detailed address information."""
        check_family(family)
        if oracle.info_parser is None:
            raise InvalidArgumentError(f"{oracle.name} does not provide detailed information")

        async def _query_info():
            stream = await tls_http.communicate(
                oracle, family, self.buffer_size, ssl_context=self.ssl_context, user_agent=self.user_agent
            )
            if stream.is_empty:
                raise MalformedResponseError(f"{oracle.name} sent no response headers")
            async with stream:
                return await oracle.info_parser(stream)

        info = await self._bounded(_query_info, oracle, per_query_timeout)
        if info is None:
            raise MalformedResponseError(f"{oracle.name} sent an unreadable response")
        return info


_default_reflector = Reflector()


async def reflect(oracles, family=socket.AF_INET, per_query_timeout=None, cancel_event=None) -> IPAddress:
    return await _default_reflector.reflect(oracles, family, per_query_timeout, cancel_event)


async def reflect_all(oracles, family=socket.AF_INET, per_query_timeout=None, cancel_event=None) -> dict[str, IPAddress]:
    return await _default_reflector.reflect_all(oracles, family, per_query_timeout, cancel_event)


async def reflect_ipv4(oracles, per_query_timeout=None, cancel_event=None) -> IPAddress:
    return await _default_reflector.reflect(oracles, socket.AF_INET, per_query_timeout, cancel_event)


async def reflect_ipv6(oracles, per_query_timeout=None, cancel_event=None) -> IPAddress:
    return await _default_reflector.reflect(oracles, socket.AF_INET6, per_query_timeout, cancel_event)
