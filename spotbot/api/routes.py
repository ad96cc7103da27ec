import hmac
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from spotbot.api.dependencies import Services, get_engine, get_services
from spotbot.core.exceptions import (
    ExchangeCallFailure,
    RiskLimitExceeded,
    SignalNotFound,
    TradingBotError,
    UnknownSignal,
    ValidationFailure,
)
from spotbot.core.trading_engine import TradingEngine
from spotbot.models.order import OrderHistoryEntry
from spotbot.models.position import Position
from spotbot.models.risk import RiskReport
from spotbot.models.signal import PendingSignal, Signal
from spotbot.utils.logger import logger

router = APIRouter(
    tags=["Trading"],
    responses={500: {"description": "Internal Server Error"}}
)


def _http_error(e: TradingBotError) -> HTTPException:
    if isinstance(e, (ValidationFailure, RiskLimitExceeded, UnknownSignal)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, SignalNotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ExchangeCallFailure):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


@router.post(
    "/webhook",
    response_model=Dict[str, Any],
    summary="Receive a trading signal",
    description="Entry point for alerts from the charting service. BUY signals wait for operator confirmation."
)
def webhook(signal: Signal, x_webhook_secret: Optional[str] = Header(None),
            services: Services = Depends(get_services)) -> Dict[str, Any]:
    provided = signal.secret or x_webhook_secret or ""
    if not hmac.compare_digest(provided.encode(), services.webhook_secret.encode()):
        logger.warning(f"Webhook with invalid secret for {signal.ticker} rejected")
        raise HTTPException(status_code=403, detail="Invalid webhook secret")
    try:
        return services.engine.process_signal(signal)
    except TradingBotError as e:
        logger.error(f"Error processing signal {signal.action} {signal.ticker}: {str(e)}")
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Error processing signal {signal.action} {signal.ticker}: {str(e)}")
        services.fault(e)
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


@router.post(
    "/telegram/webhook",
    response_model=Dict[str, Any],
    summary="Receive a Telegram update",
    description="Operator button clicks and chat commands delivered by the Telegram Bot API."
)
def telegram_webhook(update: Dict[str, Any],
                     services: Services = Depends(get_services)) -> Dict[str, Any]:
    try:
        return services.commands.handle_update(update)
    except Exception as e:
        logger.error(f"Error handling Telegram update: {str(e)}")
        services.fault(e)
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


@router.get(
    "/health",
    response_model=Dict[str, Any],
    summary="Health check"
)
def health(engine: TradingEngine = Depends(get_engine)) -> Dict[str, Any]:
    return {
        "status": "ok",
        "timestamp": datetime.now().isoformat(),
        "active_positions": engine.store.position_count,
        "pending_signals": len(engine.store.pending_signals()),
    }


@router.get(
    "/status",
    response_model=Dict[str, Any],
    summary="Detailed bot report",
    description="Trading statistics, risk report, exchange API statistics, open positions and recent orders."
)
def status(services: Services = Depends(get_services)) -> Dict[str, Any]:
    try:
        report = services.engine.get_detailed_report()
    except Exception as e:
        logger.error(f"Error building status report: {str(e)}")
        services.fault(e)
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")
    report["exchange_connection"] = services.connection
    return report


@router.get(
    "/positions",
    response_model=List[Position],
    summary="List open positions"
)
def positions(engine: TradingEngine = Depends(get_engine)) -> List[Position]:
    return engine.get_all_positions()


@router.get(
    "/pending",
    response_model=List[PendingSignal],
    summary="List signals awaiting confirmation"
)
def pending(engine: TradingEngine = Depends(get_engine)) -> List[PendingSignal]:
    return engine.get_all_pending_signals()


@router.get(
    "/history",
    response_model=List[OrderHistoryEntry],
    summary="Order audit log",
    description="Most recent orders last."
)
def history(limit: int = Query(50, ge=1, le=1000),
            engine: TradingEngine = Depends(get_engine)) -> List[OrderHistoryEntry]:
    return engine.get_order_history(limit)


@router.get(
    "/risk",
    response_model=RiskReport,
    summary="Risk report"
)
def risk(engine: TradingEngine = Depends(get_engine)) -> RiskReport:
    try:
        return engine.risk_manager.get_risk_report(engine.store.positions_by_symbol())
    except TradingBotError as e:
        logger.error(f"Error building risk report: {str(e)}")
        raise _http_error(e)


@router.post(
    "/positions/{symbol}/close",
    response_model=Position,
    summary="Close a position",
    description="Sells the remaining quantity of an open position at market."
)
def close_position(symbol: str, reason: str = "Manual close",
                   services: Services = Depends(get_services)) -> Position:
    try:
        position = services.engine.close_position(symbol, reason)
    except TradingBotError as e:
        logger.error(f"Error closing position {symbol}: {str(e)}")
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Error closing position {symbol}: {str(e)}")
        services.fault(e)
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")
    if position is None:
        raise HTTPException(status_code=404, detail=f"No open position for {symbol}")
    return position


@router.post(
    "/close_all",
    response_model=List[Dict[str, Any]],
    summary="Close all positions"
)
def close_all(reason: str = "Manual close",
              services: Services = Depends(get_services)) -> List[Dict[str, Any]]:
    try:
        return services.engine.close_all_positions(reason)
    except Exception as e:
        logger.error(f"Error closing all positions: {str(e)}")
        services.fault(e)
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


@router.post(
    "/signals/{signal_id}/confirm",
    response_model=Position,
    summary="Confirm a pending signal",
    description="Opens the position for a signal that is still inside its confirmation window."
)
def confirm_signal(signal_id: str, services: Services = Depends(get_services)) -> Position:
    try:
        return services.engine.confirm_trade(signal_id)
    except TradingBotError as e:
        logger.error(f"Error confirming signal {signal_id}: {str(e)}")
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Error confirming signal {signal_id}: {str(e)}")
        services.fault(e)
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


@router.post(
    "/signals/{signal_id}/reject",
    response_model=PendingSignal,
    summary="Reject a pending signal"
)
def reject_signal(signal_id: str, services: Services = Depends(get_services)) -> PendingSignal:
    try:
        return services.engine.reject_trade(signal_id)
    except TradingBotError as e:
        logger.error(f"Error rejecting signal {signal_id}: {str(e)}")
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Error rejecting signal {signal_id}: {str(e)}")
        services.fault(e)
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


@router.post(
    "/backup",
    response_model=Dict[str, str],
    summary="Write a state backup"
)
def backup(services: Services = Depends(get_services)) -> Dict[str, str]:
    try:
        path = services.backup()
        return {"status": "success", "path": path}
    except OSError as e:
        logger.error(f"Error writing backup: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Backup failed: {str(e)}")
