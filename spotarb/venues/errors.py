"""
Classification of venue failures into the closed ErrorKind set.

The executor only ever looks at ErrorDescriptor.kind; venue codes and free
text stay in here.
"""

from typing import Dict, Optional, Tuple

import httpx

from spotarb.models import ErrorDescriptor, ErrorKind, ErrorStage, Venue


K = ErrorKind

OKX_CODES: Dict[str, Tuple[ErrorKind, str]] = {
    # Authentication
    "50100": (K.MISSING_CREDENTIALS, "API key is frozen"),
    "50101": (K.MISSING_CREDENTIALS, "API key does not match the current environment"),
    "50102": (K.MISSING_CREDENTIALS, "Request timestamp expired"),
    "50103": (K.MISSING_CREDENTIALS, "OK-ACCESS-KEY header is missing"),
    "50104": (K.MISSING_CREDENTIALS, "OK-ACCESS-PASSPHRASE header is missing"),
    "50105": (K.MISSING_CREDENTIALS, "Incorrect API passphrase"),
    "50111": (K.MISSING_CREDENTIALS, "Invalid OK-ACCESS-KEY"),
    "50112": (K.MISSING_CREDENTIALS, "Invalid OK-ACCESS-TIMESTAMP"),
    "50113": (K.MISSING_CREDENTIALS, "Invalid signature"),
    "50114": (K.MISSING_CREDENTIALS, "Invalid authorization"),
    # General
    "50001": (K.TRADING_SUSPENDED, "Service temporarily unavailable"),
    "50002": (K.INVALID_PARAMETERS, "JSON syntax error"),
    "50004": (K.TIMEOUT, "API endpoint request timeout"),
    "50005": (K.TRADING_SUSPENDED, "API is offline or unavailable"),
    "50006": (K.INVALID_PARAMETERS, "Invalid Content-Type"),
    "50007": (K.MISSING_CREDENTIALS, "Account blocked"),
    "50011": (K.RATE_LIMITED, "Rate limit reached"),
    "50013": (K.TRADING_SUSPENDED, "System is busy"),
    "50014": (K.INVALID_PARAMETERS, "Required parameter is empty"),
    # Trading
    "51000": (K.INVALID_PARAMETERS, "Parameter error"),
    "51001": (K.INVALID_PARAMETERS, "Instrument does not exist"),
    "51002": (K.INVALID_PARAMETERS, "Order amount too small"),
    "51003": (K.INVALID_PARAMETERS, "Order price out of range"),
    "51004": (K.INVALID_PARAMETERS, "Order amount exceeds position tier limit"),
    "51008": (K.INSUFFICIENT_BALANCE, "Insufficient balance"),
    "51009": (K.TRADING_SUSPENDED, "Order placement blocked for this instrument"),
    "51012": (K.TRADING_SUSPENDED, "Trading suspended for this instrument"),
    "51020": (K.INVALID_PARAMETERS, "Order amount below minimum"),
    "51022": (K.TRADING_SUSPENDED, "Trading has not started for this instrument"),
    "51119": (K.INSUFFICIENT_BALANCE, "Insufficient balance to place order"),
    "51131": (K.INSUFFICIENT_BALANCE, "Insufficient balance"),
}

KUCOIN_CODES: Dict[str, Tuple[ErrorKind, str]] = {
    "400001": (K.MISSING_CREDENTIALS, "Authentication headers missing"),
    "400002": (K.MISSING_CREDENTIALS, "Request timestamp expired"),
    "400003": (K.MISSING_CREDENTIALS, "API key not found"),
    "400004": (K.MISSING_CREDENTIALS, "Incorrect API passphrase"),
    "400005": (K.MISSING_CREDENTIALS, "Invalid signature"),
    "400006": (K.MISSING_CREDENTIALS, "Request IP not in API key whitelist"),
    "400007": (K.MISSING_CREDENTIALS, "API key lacks trade permission"),
    "400100": (K.INVALID_PARAMETERS, "Parameter error"),
    "400200": (K.INSUFFICIENT_BALANCE, "Insufficient balance"),
    "400350": (K.TRADING_SUSPENDED, "Trading is disabled for this account"),
    "400500": (K.INVALID_PARAMETERS, "Invalid operation"),
    "400600": (K.TRADING_SUSPENDED, "Server error, trading unavailable"),
    "400700": (K.RATE_LIMITED, "Too many requests"),
    "400760": (K.INVALID_PARAMETERS, "Order size increment invalid"),
    "401000": (K.MISSING_CREDENTIALS, "Invalid API key"),
    "401100": (K.MISSING_CREDENTIALS, "Invalid API signature"),
    "401200": (K.MISSING_CREDENTIALS, "Invalid API passphrase"),
    "401300": (K.MISSING_CREDENTIALS, "API key expired"),
    "429000": (K.RATE_LIMITED, "Too many requests"),
    "500000": (K.UNKNOWN, "Internal server error"),
    "900001": (K.INVALID_PARAMETERS, "Trading pair does not exist"),
    "200004": (K.INSUFFICIENT_BALANCE, "Insufficient balance"),
}


class ErrorClassifier:
    """Maps venue codes, HTTP statuses and transport faults to ErrorDescriptors."""

    TABLES: Dict[Venue, Dict[str, Tuple[ErrorKind, str]]] = {
        Venue.OKX: OKX_CODES,
        Venue.KUCOIN: KUCOIN_CODES,
    }

    def classify_code(
        self, venue: Venue, code: Optional[str], message: Optional[str] = None
    ) -> Tuple[ErrorKind, str]:
        """
        Classify a venue failure code.

        Unknown codes fall back to the venue's own message under ``unknown``.
        """
        code = str(code) if code is not None else None
        entry = self.TABLES[venue].get(code) if code else None
        if entry is None:
            text = message or "Unknown venue error"
            return K.UNKNOWN, f"{text} (code {code})" if code else text
        kind, reason = entry
        if message and message != reason:
            reason = f"{reason}: {message}"
        return kind, reason

    @staticmethod
    def classify_status(status_code: int) -> ErrorKind:
        if status_code == 429:
            return K.RATE_LIMITED
        return K.HTTP_ERROR

    def api_error(
        self,
        venue: Venue,
        code: Optional[str],
        message: Optional[str],
        raw_body: Optional[str] = None,
        http_status: Optional[int] = None,
    ) -> ErrorDescriptor:
        kind, reason = self.classify_code(venue, code, message)
        return ErrorDescriptor(
            kind=kind,
            venue=venue,
            message=reason,
            stage=ErrorStage.API,
            http_status=http_status,
            venue_code=str(code) if code is not None else None,
            raw_body=raw_body,
        )

    def http_error(
        self,
        venue: Venue,
        status_code: int,
        code: Optional[str] = None,
        message: Optional[str] = None,
        raw_body: Optional[str] = None,
    ) -> ErrorDescriptor:
        kind = self.classify_status(status_code)
        text = f"HTTP {status_code}"
        if message:
            text = f"{text}: {message}"
        return ErrorDescriptor(
            kind=kind,
            venue=venue,
            message=text,
            stage=ErrorStage.HTTP,
            http_status=status_code,
            venue_code=str(code) if code is not None else None,
            raw_body=raw_body,
        )

    @staticmethod
    def transport_error(venue: Venue, exc: Exception) -> ErrorDescriptor:
        if isinstance(exc, httpx.TimeoutException):
            return ErrorDescriptor(
                kind=K.TIMEOUT,
                venue=venue,
                message=f"Request to {venue.value} timed out",
                stage=ErrorStage.TRANSPORT,
            )
        if isinstance(exc, httpx.DecodingError):
            # Body arrived but could not be decompressed or decoded
            return ErrorClassifier.malformed(
                venue, f"{venue.value} sent an undecodable body: {exc}", stage=ErrorStage.PARSE,
            )
        return ErrorDescriptor(
            kind=K.NETWORK_ERROR,
            venue=venue,
            message=f"Network error talking to {venue.value}: {type(exc).__name__}",
            stage=ErrorStage.TRANSPORT,
        )

    @staticmethod
    def malformed(
        venue: Venue,
        message: str,
        stage: ErrorStage = ErrorStage.PARSE,
        http_status: Optional[int] = None,
        raw_body: Optional[str] = None,
    ) -> ErrorDescriptor:
        return ErrorDescriptor(
            kind=K.MALFORMED_RESPONSE,
            venue=venue,
            message=message,
            stage=stage,
            http_status=http_status,
            raw_body=raw_body,
        )

    @staticmethod
    def missing_credentials(venue: Venue, missing) -> ErrorDescriptor:
        return ErrorDescriptor(
            kind=K.MISSING_CREDENTIALS,
            venue=venue,
            message=f"{venue.value} API credentials not configured: {', '.join(missing)}",
            stage=ErrorStage.PRECONDITION,
        )

    @staticmethod
    def sell_skipped(venue: Venue, buy_error: Optional[ErrorDescriptor]) -> ErrorDescriptor:
        """Descriptor for a sell leg that was never sent because the buy failed."""
        return ErrorDescriptor(
            kind=buy_error.kind if buy_error else K.UNKNOWN,
            venue=venue,
            message="Buy order failed, sell order not executed",
            stage=ErrorStage.SKIPPED,
            cause=buy_error,
        )

    @staticmethod
    def unexpected(message: str, venue: Optional[Venue] = None) -> ErrorDescriptor:
        return ErrorDescriptor(
            kind=K.UNKNOWN,
            venue=venue,
            message=f"unexpected_error: {message}",
            stage=ErrorStage.EXECUTOR,
        )


classifier = ErrorClassifier()
