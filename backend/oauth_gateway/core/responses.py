"""HTTP response helpers shared by the gateway routes."""

from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi.responses import JSONResponse, RedirectResponse

from oauth_gateway.core.errors import GatewayError

CORS_ALLOW_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
CORS_ALLOW_HEADERS = ["Content-Type", "Authorization"]
CORS_MAX_AGE = 86400

# Sent on every JSON response, including ones for requests without an Origin header
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": ", ".join(CORS_ALLOW_METHODS),
    "Access-Control-Allow-Headers": ", ".join(CORS_ALLOW_HEADERS),
    "Access-Control-Max-Age": str(CORS_MAX_AGE),
}


def json_response(body: dict[str, Any], status_code: int = 200) -> JSONResponse:
    return JSONResponse(body, status_code=status_code, headers=CORS_HEADERS)


def redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url, status_code=302)


def with_query(url: str, params: dict[str, str]) -> str:
    """Set query parameters on url, replacing existing ones with the same name."""
    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    query.update(params)
    return urlunsplit(parts._replace(query=urlencode(query)))


def error_response(error: GatewayError) -> JSONResponse | RedirectResponse:
    """Render a gateway error.

    Errors that know the tenant's application URL send the user back to
    it with error and error_description; all others are returned as JSON.
    """
    if error.redirect_url:
        return redirect(
            with_query(
                error.redirect_url,
                {"error": error.code, "error_description": error.description},
            )
        )
    return json_response(error.to_dict(), error.status_code)
