from __future__ import annotations

from typing import cast

from fastapi import APIRouter, Depends, Query, Request, Response

from log_decoder.decoder import Decoder
from log_decoder.errors import CallerFault
from log_decoder.schemas import DecodeResponse

router = APIRouter(prefix="/logs", tags=["logs"])


def get_decoder(request: Request) -> Decoder:
    return cast(Decoder, request.app.state.decoder)


@router.get("/decode", response_model=DecodeResponse)
async def decode(
    response: Response,
    input: str | None = Query(default=None),  # noqa: A002
    decoder: Decoder = Depends(get_decoder),
) -> DecodeResponse:
    # Missing, empty and whitespace-only are all blank.
    if input is None or not input.strip():
        raise CallerFault("Query param 'input' must not be blank.")

    # Decode failures propagate to the failure boundary (500).
    decoded = decoder.decode(input.encode("utf-8"))

    response.headers["Cache-Control"] = "no-store"
    return DecodeResponse(decoded=decoded, length=len(decoded))
