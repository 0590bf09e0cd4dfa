from fastapi import APIRouter, HTTPException, Request

from pricegate.errors import InvalidBatchError
from pricegate.schemas.batch import PriceBatchRequest, PriceBatchResponse

router = APIRouter()


def _service(request: Request):
    service = request.app.state.price_gateway_service
    if service is None:
        raise HTTPException(status_code=503, detail='SERVICE_NOT_READY')
    return service


def _price_batch(request: Request, symbols: list[str]) -> dict:
    service = _service(request)
    try:
        records, meta = service.get_price_batch(symbols)
    except InvalidBatchError as exc:
        raise HTTPException(status_code=400, detail='NO_SYMBOLS_PROVIDED') from exc
    response = PriceBatchResponse(
        prices=records,
        currency=service.rate_provider.reporting_currency,
        missing=meta.missing_symbols,
    )
    return response.model_dump(by_alias=True, mode='json')


@router.post('/stock-prices')
def post_stock_prices(request: Request, req: PriceBatchRequest | None = None):
    return _price_batch(request, req.symbols if req is not None else [])


@router.get('/prices')
def get_prices(request: Request, symbols: str = ''):
    req = [s.strip() for s in symbols.split(',') if s.strip()]
    return _price_batch(request, req)


@router.get('/rates/{currency}')
def get_rate(currency: str, request: Request):
    code = currency.strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise HTTPException(status_code=400, detail='INVALID_CURRENCY')
    rate = _service(request).rate_provider.lookup(code)
    return rate.model_dump(by_alias=True, mode='json')


@router.get('/metrics/quote')
def quote_metrics(request: Request):
    return _service(request).metrics()
