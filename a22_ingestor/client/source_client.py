"""Client for the A22 traffic web service.

The service is session based: ``POST /token`` returns a session id that
must accompany every further request, and ``DELETE /token/<id>`` releases
it. Read requests are ``GET`` requests carrying a JSON body.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable, Mapping
from typing import Any

import httpx

from ..exceptions import (
    AuthenticationError,
    CollectionError,
    ProtocolError,
    SessionExpiredError,
)
from ..monitoring.metrics import record_group_abandoned, record_http_response
from ..schemas.records import FetchResult, Station, TransitEvent
from ..utils.config import SyncSettings, WebserviceSettings
from ..utils.logging import setup_logger
from ..utils.retry import AuthRetryPolicy, call_with_session_renewal
from .codec import (
    build_station_code,
    format_window_bound,
    group_of,
    lane_description,
    mask_token,
    parse_decorated_timestamp,
    serialize_raw_metadata,
)


class SourceClient:
    """Stateful, session-owning client for the A22 web service.

    One instance holds exactly one live session. It may be shared by
    several threads: session renewal is serialised so that concurrent 401
    responses for the same stale token trigger a single handshake.
    ``close`` must not run while other threads still have requests in
    flight.
    """

    logger = setup_logger(__name__, context={"mode": "client"})

    def __init__(
        self,
        webservice: WebserviceSettings,
        *,
        sync: SyncSettings | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not webservice.has_credentials():
            raise AuthenticationError("web service url, username and password are required")

        sync = sync or SyncSettings()
        self._webservice = webservice
        self._retry_policy = AuthRetryPolicy(
            max_attempts=sync.max_auth_attempts,
            backoff_seconds=sync.auth_backoff_seconds,
        )
        self._inter_group_delay = sync.inter_group_delay_seconds
        self._sleep = sleep
        self._token: str | None = None
        self._token_lock = threading.Lock()

        client_kwargs: dict[str, Any] = {
            "base_url": webservice.url,
            "timeout": httpx.Timeout(
                webservice.read_timeout,
                connect=webservice.connect_timeout,
            ),
            "headers": {
                "Content-Type": "application/json",
                "User-Agent": webservice.user_agent,
                "Accept": "*/*",
            },
        }
        if transport is not None:
            client_kwargs["transport"] = transport
        self._http = httpx.Client(**client_kwargs)

    @classmethod
    def open(
        cls,
        webservice: WebserviceSettings,
        *,
        sync: SyncSettings | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> SourceClient:
        """Create a client and perform the authentication handshake."""

        client = cls(webservice, sync=sync, transport=transport, sleep=sleep)
        try:
            client.authenticate()
        except Exception:
            client._http.close()
            raise
        return client

    def __enter__(self) -> SourceClient:
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        try:
            if self._token is not None:
                self.close()
        except AuthenticationError as release_error:
            # an unreleased token expires on the remote side
            self.logger.warning(
                "could not release session %s: %s",
                mask_token(self._token),
                release_error,
                extra={"status": "error"},
            )
        finally:
            self._http.close()

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None

    @property
    def station_prefix(self) -> str:
        return self._webservice.station_prefix

    # ------------------------------------------------------------------
    # session handling

    def authenticate(self) -> str:
        """Run the handshake and store the new session token."""

        with self._token_lock:
            return self._handshake()

    def _handshake(self) -> str:
        ws = self._webservice
        body = {"request": {"username": ws.username, "password": ws.password}}
        try:
            response = self._http.post(ws.token_path, json=body)
        except httpx.HTTPError as exc:
            raise AuthenticationError(f"authentication request failed: {exc}") from exc
        record_http_response("token", response.status_code)
        if response.status_code != 200:
            raise AuthenticationError(
                f"authentication failure (response code was {response.status_code})"
            )

        try:
            session_id = response.json()[ws.token_result_key]["sessionId"]
        except (ValueError, KeyError, TypeError) as exc:
            raise AuthenticationError("authentication failure (could not parse response)") from exc
        if not isinstance(session_id, str) or not session_id:
            raise AuthenticationError("authentication failure (could not find sessionId in response)")

        self._token = session_id
        self.logger.info("auth OK, new token = %s", mask_token(session_id))
        return session_id

    def _renew_session(self, stale_token: str | None) -> None:
        """Re-authenticate unless another thread already replaced ``stale_token``."""

        with self._token_lock:
            if self._token is not None and self._token != stale_token:
                return
            self._handshake()

    def close(self) -> None:
        """Release the session token on the remote service."""

        with self._token_lock:
            token = self._token
            if token is None:
                raise AuthenticationError("there is no authenticated session")

            ws = self._webservice
            try:
                response = self._http.request(
                    "DELETE",
                    f"{ws.token_path}/{token}",
                    content=b"\n",
                )
            except httpx.HTTPError as exc:
                raise AuthenticationError(f"de-authentication request failed: {exc}") from exc
            record_http_response("release", response.status_code)
            if response.status_code != 200:
                raise AuthenticationError(
                    f"de-authentication failure (response code was {response.status_code})"
                )
            try:
                confirmed = response.json()[ws.release_result_key]
            except (ValueError, KeyError, TypeError) as exc:
                raise AuthenticationError(
                    "de-authentication failure (could not parse response)"
                ) from exc
            if confirmed is not True:
                raise AuthenticationError(
                    "de-authentication failure (de-authentication was not confirmed)"
                )

            self._token = None
            self.logger.info("de-auth OK, old token = %s", mask_token(token))

    def _require_token(self) -> str:
        token = self._token
        if token is None:
            raise AuthenticationError("there is no authenticated session")
        return token

    def _get(self, operation: str, path: str, body: dict[str, Any]) -> httpx.Response:
        try:
            response = self._http.request("GET", path, json=body)
        except httpx.HTTPError as exc:
            raise CollectionError(f"{operation} request failed: {exc}") from exc
        record_http_response(operation, response.status_code)
        return response

    @staticmethod
    def _result(response: httpx.Response, key: str, operation: str) -> Any:
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProtocolError(operation, "body is not JSON") from exc
        if not isinstance(payload, dict) or key not in payload:
            raise ProtocolError(operation, f"missing '{key}'")
        return payload[key]

    # ------------------------------------------------------------------
    # read operations

    def list_stations(self) -> list[Station]:
        """Return every detector channel of every group in the catalog."""

        ws = self._webservice
        response = self._get("catalog", ws.catalog_path, {"sessionId": self._require_token()})
        if response.status_code != 200:
            raise CollectionError(
                f"could not retrieve traffic sensor list (response code was {response.status_code})"
            )

        groups = self._result(response, ws.catalog_result_key, "catalog")
        if not isinstance(groups, list):
            raise ProtocolError("catalog", "sensor list is not an array")

        stations: list[Station] = []
        try:
            for group in groups:
                channels = group["sensori"]
                group_fields = {k: v for k, v in group.items() if k != "sensori"}
                # a group without channels is valid and contributes nothing
                for channel in channels:
                    stations.append(
                        Station(
                            code=build_station_code(
                                group["idspira"], channel["idsensore"], ws.station_prefix
                            ),
                            name=(
                                f"{group['descrizione']} "
                                f"({lane_description(channel.get('idcorsia'), channel.get('iddirezione'))})"
                            ),
                            latitude=group.get("latitudine"),
                            longitude=group.get("longitudine"),
                            raw_metadata=serialize_raw_metadata({**group_fields, **channel}),
                        )
                    )
        except (KeyError, TypeError, AttributeError, ValueError) as exc:
            raise ProtocolError("catalog", f"unexpected sensor entry ({exc!r})") from exc

        self.logger.debug("catalog lists %d stations", len(stations))
        return stations

    def list_country_codes(self) -> dict[int, str]:
        """Return the nationality code table (numeric id -> short code)."""

        ws = self._webservice
        response = self._get("codes", ws.codes_path, {"sessionId": self._require_token()})
        if response.status_code != 200:
            raise CollectionError(
                f"could not retrieve country codes (response code was {response.status_code})"
            )

        entries = self._result(response, ws.codes_result_key, "codes")
        if not isinstance(entries, list):
            raise ProtocolError("codes", "code table is not an array")
        try:
            return {int(entry["idnazione"]): str(entry["sigla"]) for entry in entries}
        except (KeyError, TypeError, ValueError) as exc:
            raise ProtocolError("codes", f"unexpected code entry ({exc!r})") from exc

    def fetch_events(
        self,
        stations: Iterable[Station | str],
        from_ts: int,
        to_ts: int,
        group_from_ts: Mapping[str, int] | None = None,
        *,
        country_codes: Mapping[int, str] | None = None,
    ) -> FetchResult:
        """Fetch transit events for every group of ``stations`` in ``[from_ts, to_ts]``.

        One request is issued per distinct group id. ``group_from_ts``
        overrides ``from_ts`` for the groups it names. Groups answered with
        a non-success status, failing in transport, or still rejected after
        the authentication retries are skipped for this call. A malformed
        response aborts the whole call with :class:`ProtocolError`.
        """

        result = FetchResult()
        group_ids = sorted({self._group_id(station) for station in stations}, key=_group_sort_key)
        if not group_ids:
            return result

        to_token = format_window_bound(to_ts, upper=True)
        for group_id in group_ids:
            group_from = from_ts
            if group_from_ts is not None and group_id in group_from_ts:
                group_from = group_from_ts[group_id]
            try:
                events = self._fetch_group(
                    group_id,
                    format_window_bound(group_from),
                    to_token,
                    result,
                    country_codes or {},
                )
            finally:
                self._sleep(self._inter_group_delay)
            if events is not None:
                result.events.extend(events)

        self.logger.info(
            "retrieved %d transit events from %d groups, response codes: %s",
            len(result.events),
            len(group_ids),
            dict(result.status_counts),
        )
        return result

    def _group_id(self, station: Station | str) -> str:
        if isinstance(station, Station):
            return station.group_id
        return group_of(station)

    def _fetch_group(
        self,
        group_id: str,
        from_token: str,
        to_token: str,
        result: FetchResult,
        country_codes: Mapping[int, str],
    ) -> list[TransitEvent] | None:
        """Return the events of one group, or None when the group is skipped."""

        ws = self._webservice
        context = {"group_id": group_id}
        rejected_token: str | None = None

        def _send() -> httpx.Response:
            nonlocal rejected_token
            token = self._require_token()
            body = {
                "request": {
                    "sessionId": token,
                    "idspira": _wire_group_id(group_id),
                    "fromData": from_token,
                    "toData": to_token,
                }
            }
            response = self._get("events", ws.events_path, body)
            result.status_counts[response.status_code] += 1
            if self._retry_policy.should_renew(response):
                rejected_token = token
                raise SessionExpiredError(response.status_code, group_id=group_id)
            return response

        def _renew() -> None:
            self._renew_session(rejected_token)

        try:
            response = call_with_session_renewal(
                _send,
                policy=self._retry_policy,
                renew=_renew,
                sleep=self._sleep,
                log=self.logger,
                context=context,
            )
        except SessionExpiredError as exc:
            self.logger.error(
                "giving up on group after %d attempts: %s",
                self._retry_policy.max_attempts,
                exc,
                extra={**context, "status": "error"},
            )
            result.skipped_groups[group_id] = "auth"
            record_group_abandoned("auth")
            return None
        except AuthenticationError as exc:
            self.logger.error(
                "giving up on group, session renewal failed: %s",
                exc,
                extra={**context, "status": "error"},
            )
            result.skipped_groups[group_id] = "auth"
            record_group_abandoned("auth")
            return None
        except ProtocolError:
            raise
        except CollectionError as exc:
            self.logger.error(
                "giving up on group, request failed: %s",
                exc,
                extra={**context, "status": "error"},
            )
            result.skipped_groups[group_id] = "transport"
            record_group_abandoned("transport")
            return None

        if response.status_code != 200:
            # the service answers 500 for groups without data in the window
            self.logger.debug(
                "skipping group (response status was %d)",
                response.status_code,
                extra={**context, "status": str(response.status_code)},
            )
            result.skipped_groups[group_id] = f"http_{response.status_code}"
            record_group_abandoned("status")
            return None

        entries = self._result(response, ws.events_result_key, "transit event")
        if not isinstance(entries, list):
            raise ProtocolError("transit event", "event list is not an array")
        return [self._to_event(entry, country_codes) for entry in entries]

    def _to_event(self, entry: Any, country_codes: Mapping[int, str]) -> TransitEvent:
        try:
            country_id = entry.get("nazionalita")
            return TransitEvent(
                stationcode=build_station_code(
                    entry["idspira"], entry["idsensore"], self._webservice.station_prefix
                ),
                timestamp=parse_decorated_timestamp(entry["data"]),
                distance=entry["distanza"],
                headway=entry["avanzamento"],
                length=entry["lunghezza"],
                axles=entry["assi"],
                against_traffic=bool(entry["controsenso"]),
                vehicle_class=entry["classe"],
                speed=entry["velocita"],
                direction=entry["direzione"],
                country=_resolve_country(country_id, country_codes),
                license_plate_initials=entry.get("targa"),
            )
        except ProtocolError:
            raise
        except (KeyError, TypeError, AttributeError, ValueError) as exc:
            raise ProtocolError("transit event", f"unexpected event entry ({exc!r})") from exc


def _resolve_country(country_id: Any, country_codes: Mapping[int, str]) -> str | None:
    if country_id is None or country_id == "":
        return None
    try:
        return country_codes.get(int(country_id))
    except (TypeError, ValueError):
        return None


def _wire_group_id(group_id: str) -> int | str:
    return int(group_id) if group_id.isdigit() else group_id


def _group_sort_key(group_id: str) -> tuple[int, int | str]:
    return (0, int(group_id)) if group_id.isdigit() else (1, group_id)


