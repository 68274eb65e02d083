"""
QR Signal Session Routes
Drive handshake sessions over HTTP: role selection, scanning, QR code
rendering, and the engine bridge used by a browser media engine
"""
import io
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse, StreamingResponse
from pydantic import BaseModel

from qrsignal.errors import PayloadError
from qrsignal.handshake import Role
from qrsignal.protocol.payload import PayloadKind, parse_description

from backend.registry import HostedSession, RegistryFull, SessionRegistry, get_registry

logger = logging.getLogger(__name__)

router = APIRouter()


# Pydantic models
class RoleRequest(BaseModel):
    role: Role


class ScanRequest(BaseModel):
    symbol: str


class DescriptionSubmit(BaseModel):
    description: str


class CandidateSubmit(BaseModel):
    candidate: str


class StateSubmit(BaseModel):
    state: str


class FailureSubmit(BaseModel):
    reason: str


class FragmentInfo(BaseModel):
    position: int
    kind: str
    index: int
    total: int
    version: int
    text: str


def _get_hosted(session_id: str, registry: SessionRegistry) -> HostedSession:
    hosted = registry.get(session_id)
    if hosted is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return hosted


# ============================================================================
# Sessions
# ============================================================================

@router.post("", status_code=201)
async def create_session(registry: SessionRegistry = Depends(get_registry)):
    """Create a new handshake session"""
    try:
        hosted = registry.create()
    except RegistryFull as e:
        raise HTTPException(status_code=503, detail=str(e))
    return hosted.to_dict()


@router.get("")
async def list_sessions(registry: SessionRegistry = Depends(get_registry)):
    """List hosted sessions"""
    sessions = [hosted.to_dict() for hosted in registry.list_sessions()]
    return {"sessions": sessions, "count": len(sessions)}


@router.get("/{session_id}")
async def get_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Get session status"""
    return _get_hosted(session_id, registry).to_dict()


@router.delete("/{session_id}")
async def delete_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Clean up and remove a session"""
    if not registry.remove(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"success": True, "session_id": session_id}


@router.post("/{session_id}/role")
async def select_role(session_id: str, request: RoleRequest,
                      registry: SessionRegistry = Depends(get_registry)):
    """Select initiator or responder; rejected while a role is held"""
    hosted = _get_hosted(session_id, registry)
    if not hosted.session.select_role(request.role):
        raise HTTPException(
            status_code=409,
            detail=f"Session already has role {hosted.session.role.value}; delete or reset it first",
        )
    return hosted.to_dict()


@router.post("/{session_id}/reset")
async def reset_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Clean up the session but keep it registered for a new attempt"""
    hosted = _get_hosted(session_id, registry)
    hosted.session.cleanup()
    return hosted.to_dict()


# ============================================================================
# Scanning
# ============================================================================

@router.post("/{session_id}/scan")
async def scan_symbol(session_id: str, request: ScanRequest,
                      registry: SessionRegistry = Depends(get_registry)):
    """Feed one decoded QR symbol"""
    hosted = _get_hosted(session_id, registry)
    if hosted.session.role is None:
        raise HTTPException(status_code=409, detail="Select a role before scanning")
    result = hosted.session.feed_scanned_symbol(request.symbol)
    return {"result": result.to_dict(), "session": hosted.to_dict()}


@router.post("/{session_id}/scan/reset")
async def start_scan(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Start a fresh scan, discarding any partial batch"""
    hosted = _get_hosted(session_id, registry)
    if not hosted.session.start_scan():
        raise HTTPException(status_code=409, detail="Select a role before scanning")
    return hosted.to_dict()


# ============================================================================
# Local QR codes
# ============================================================================

@router.get("/{session_id}/fragments")
async def list_fragments(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """List QR codes waiting to be shown to the other device"""
    hosted = _get_hosted(session_id, registry)
    fragments: List[FragmentInfo] = []
    for kind in PayloadKind:
        export = hosted.session.get_local_export(kind)
        if export is None:
            continue
        for code in export.codes:
            fragments.append(FragmentInfo(
                position=len(fragments),
                kind=kind.value,
                index=code.index,
                total=code.total,
                version=code.version,
                text=code.text,
            ))
    return {"fragments": fragments, "count": len(fragments)}


@router.get("/{session_id}/fragments/{position}")
async def render_fragment(
    session_id: str,
    position: int,
    format: str = Query("png", pattern="^(png|svg|text)$"),
    registry: SessionRegistry = Depends(get_registry),
):
    """Render one pending QR code as PNG, SVG, or terminal text"""
    hosted = _get_hosted(session_id, registry)
    codes = hosted.session.get_pending_local_fragments()
    if position < 0 or position >= len(codes):
        raise HTTPException(status_code=404, detail=f"No QR code at position {position}")
    code = codes[position]

    if format == "text":
        return PlainTextResponse(code.to_ascii())

    if format == "svg":
        content, media_type, ext = code.to_svg(), "image/svg+xml", "svg"
    else:
        content, media_type, ext = code.to_png(), "image/png", "png"

    return StreamingResponse(
        io.BytesIO(content),
        media_type=media_type,
        headers={
            "Content-Disposition": f"inline; filename=fragment-{position}.{ext}",
            "Cache-Control": "no-store",
            "X-Fragment-Label": code.fragment.label,
        },
    )


# ============================================================================
# Engine bridge
# ============================================================================

@router.get("/{session_id}/engine/outbox")
async def drain_outbox(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Messages the media engine must act on, oldest first"""
    hosted = _get_hosted(session_id, registry)
    messages = hosted.peer.drain_outbox()
    return {"messages": messages, "count": len(messages)}


@router.post("/{session_id}/engine/description")
async def submit_description(session_id: str, request: DescriptionSubmit,
                             registry: SessionRegistry = Depends(get_registry)):
    """Engine delivers the local description it was asked for"""
    hosted = _get_hosted(session_id, registry)
    try:
        parse_description(request.description)
    except PayloadError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not hosted.peer.submit_description(request.description):
        raise HTTPException(status_code=409, detail="No local description was requested")
    return hosted.to_dict()


@router.post("/{session_id}/engine/candidate")
async def submit_candidate(session_id: str, request: CandidateSubmit,
                           registry: SessionRegistry = Depends(get_registry)):
    """Engine reports one gathered local candidate"""
    hosted = _get_hosted(session_id, registry)
    hosted.peer.submit_candidate(request.candidate)
    return {"success": True}


@router.post("/{session_id}/engine/gathering-complete")
async def submit_gathering_complete(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Engine finished gathering; queued candidates become one QR batch"""
    hosted = _get_hosted(session_id, registry)
    hosted.peer.submit_gathering_complete()
    return hosted.to_dict()


@router.post("/{session_id}/engine/state")
async def submit_state(session_id: str, request: StateSubmit,
                       registry: SessionRegistry = Depends(get_registry)):
    """Engine reports a connection state change"""
    hosted = _get_hosted(session_id, registry)
    hosted.peer.submit_state(request.state)
    return hosted.to_dict()


@router.post("/{session_id}/engine/failure")
async def submit_failure(session_id: str, request: FailureSubmit,
                         registry: SessionRegistry = Depends(get_registry)):
    """Engine reports a failed negotiation; the session closes"""
    hosted = _get_hosted(session_id, registry)
    logger.warning("Engine reported failure for session %s: %s", session_id, request.reason)
    hosted.peer.submit_failure(request.reason)
    return hosted.to_dict()
