import os
import threading
from fastapi import FastAPI, HTTPException, Depends, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.concurrency import run_in_threadpool
from typing import List, Optional
from dotenv import load_dotenv

import share
from assistant import AssistantBridge, build_capabilities
from database import get_storage
from errors import KhataError, NotFound, PinMismatch
from khata import KhataState
from schemas import (
    AddLine, Bill, ChatMessage, ChatReply, ChatRequest, Customer, CustomerIn,
    CustomerSummary, DraftView, ExactQuantity, Ledger, PaidAmount, PinCheck,
    PinUpdate, Product, ProductIn, SelectCustomer, ShareLink, Stats, StepLine,
)

load_dotenv()

app = FastAPI(title="Smart Khata API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_khata: Optional[KhataState] = None
_assistant: Optional[AssistantBridge] = None
_khata_lock = threading.Lock()


# ----- Helpers -----

def get_khata() -> KhataState:
    global _khata
    with _khata_lock:
        if _khata is None:
            _khata = KhataState(get_storage())
    return _khata


def khata_provider():
    """Hands out ``get_khata`` itself, for callers that report storage errors."""
    return get_khata


def get_assistant() -> AssistantBridge:
    global _assistant
    if _assistant is None:
        generator, recognizer = build_capabilities()
        _assistant = AssistantBridge(generator, recognizer)
    return _assistant


def shop_name() -> str:
    return os.getenv("SHOP_NAME", "Kishore General Store")


@app.exception_handler(KhataError)
def khata_error_handler(request: Request, exc: KhataError):
    if isinstance(exc, NotFound):
        status = 404
    elif isinstance(exc, PinMismatch):
        status = 403
    else:
        status = 400
    return JSONResponse(status_code=status, content={"detail": str(exc)})


def draft_view(khata: KhataState) -> DraftView:
    draft = khata.draft
    return DraftView(customer=draft.customer, items=draft.lines, paid_amount=draft.paid_amount, totals=draft.totals())


# ----- Product Endpoints -----

@app.post("/api/products", response_model=Product)
def add_product(product: ProductIn, khata: KhataState = Depends(get_khata)):
    return khata.add_product(product.name, product.price, product.unit, product.category, product.image)


@app.get("/api/products", response_model=List[Product])
def list_products(q: Optional[str] = None, limit: Optional[int] = None, khata: KhataState = Depends(get_khata)):
    return khata.search_products(q or "", limit)


@app.get("/api/products/{product_id}", response_model=Product)
def get_product(product_id: str, khata: KhataState = Depends(get_khata)):
    return khata.get_product(product_id)


@app.put("/api/products/{product_id}", response_model=Product)
def update_product(product_id: str, product: ProductIn, khata: KhataState = Depends(get_khata)):
    return khata.update_product(product_id, product.name, product.price, product.unit, product.category, product.image)


# ----- Customer / Khata Endpoints -----

@app.post("/api/customers", response_model=Customer)
def add_customer(customer: CustomerIn, khata: KhataState = Depends(get_khata)):
    return khata.add_customer(customer.name, customer.mobile, customer.address)


@app.get("/api/customers", response_model=List[CustomerSummary])
def list_customers(q: Optional[str] = None, khata: KhataState = Depends(get_khata)):
    return [
        CustomerSummary(customer=c, total_due=khata.customer_dues(c.id))
        for c in khata.search_customers(q or "")
    ]


@app.get("/api/customers/{customer_id}", response_model=Ledger)
def customer_ledger(customer_id: str, khata: KhataState = Depends(get_khata)):
    return khata.customer_ledger(customer_id)


@app.get("/api/customers/{customer_id}/share", response_model=ShareLink)
def share_khata(customer_id: str, khata: KhataState = Depends(get_khata)):
    ledger = khata.customer_ledger(customer_id)
    text = share.khata_statement_text(ledger, shop_name())
    return ShareLink(url=share.whatsapp_link(ledger.customer.mobile, text), text=text)


@app.get("/api/customers/{customer_id}/print", response_class=PlainTextResponse)
def print_khata(customer_id: str, khata: KhataState = Depends(get_khata)):
    return share.printable_ledger(khata.customer_ledger(customer_id), shop_name())


# ----- Billing (running bill) -----
# Draft edits hold the state lock so overlapping requests apply one at a time.

@app.get("/api/draft", response_model=DraftView)
def get_draft(khata: KhataState = Depends(get_khata)):
    with khata.lock:
        return draft_view(khata)


@app.delete("/api/draft", response_model=DraftView)
def discard_draft(khata: KhataState = Depends(get_khata)):
    with khata.lock:
        khata.draft.clear()
        return draft_view(khata)


@app.put("/api/draft/customer", response_model=DraftView)
def select_customer(payload: SelectCustomer, khata: KhataState = Depends(get_khata)):
    with khata.lock:
        khata.draft.select_customer(khata.get_customer(payload.customer_id))
        return draft_view(khata)


@app.delete("/api/draft/customer", response_model=DraftView)
def clear_customer(khata: KhataState = Depends(get_khata)):
    with khata.lock:
        khata.draft.clear_customer()
        return draft_view(khata)


@app.put("/api/draft/paid", response_model=DraftView)
def set_paid(payload: PaidAmount, khata: KhataState = Depends(get_khata)):
    with khata.lock:
        khata.draft.set_paid(payload.amount)
        return draft_view(khata)


@app.post("/api/draft/items", response_model=DraftView)
def add_item(payload: AddLine, khata: KhataState = Depends(get_khata)):
    with khata.lock:
        khata.draft.add_product(khata.get_product(payload.product_id))
        return draft_view(khata)


@app.post("/api/draft/items/{product_id}/step", response_model=DraftView)
def step_item(product_id: str, payload: StepLine, khata: KhataState = Depends(get_khata)):
    with khata.lock:
        khata.draft.step(product_id, payload.direction)
        return draft_view(khata)


@app.put("/api/draft/items/{product_id}/quantity", response_model=DraftView)
def set_item_quantity(product_id: str, payload: ExactQuantity, khata: KhataState = Depends(get_khata)):
    with khata.lock:
        khata.draft.set_quantity(product_id, payload.value, payload.granularity)
        return draft_view(khata)


@app.delete("/api/draft/items/{product_id}", response_model=DraftView)
def remove_item(product_id: str, khata: KhataState = Depends(get_khata)):
    with khata.lock:
        khata.draft.remove(product_id)
        return draft_view(khata)


@app.post("/api/draft/finalize", response_model=Bill)
def finalize_bill(khata: KhataState = Depends(get_khata)):
    return khata.finalize_bill()


# ----- Bills -----

@app.get("/api/bills", response_model=List[Bill])
def list_bills(khata: KhataState = Depends(get_khata)):
    return khata.list_bills()


@app.get("/api/bills/{bill_id}", response_model=Bill)
def get_bill(bill_id: str, khata: KhataState = Depends(get_khata)):
    return khata.get_bill(bill_id)


@app.delete("/api/bills/{bill_id}", response_model=dict)
def delete_bill(bill_id: str, x_pin: Optional[str] = Header(None), khata: KhataState = Depends(get_khata)):
    khata.delete_bill(bill_id, x_pin)
    return {"deleted": True}


@app.get("/api/bills/{bill_id}/share", response_model=ShareLink)
def share_bill(bill_id: str, khata: KhataState = Depends(get_khata)):
    bill = khata.get_bill(bill_id)
    text = share.receipt_text(bill, shop_name())
    return ShareLink(url=share.whatsapp_link(bill.customer_mobile, text), text=text)


@app.get("/api/bills/{bill_id}/print", response_class=PlainTextResponse)
def print_bill(bill_id: str, khata: KhataState = Depends(get_khata)):
    return share.printable_receipt(khata.get_bill(bill_id), shop_name())


@app.get("/api/stats", response_model=Stats)
def stats(khata: KhataState = Depends(get_khata)):
    return khata.stats()


# ----- Settings -----

@app.get("/api/settings", response_model=dict)
def settings(khata: KhataState = Depends(get_khata)):
    return {"pinSet": khata.pin is not None}


@app.put("/api/settings/pin", response_model=dict)
def update_pin(payload: PinUpdate, khata: KhataState = Depends(get_khata)):
    khata.set_pin(payload.pin, payload.confirm_pin)
    return {"pinSet": True}


@app.post("/api/settings/clear", response_model=dict)
def clear_data(payload: PinCheck, khata: KhataState = Depends(get_khata)):
    khata.clear_all_data(payload.pin)
    return {"cleared": True}


# ----- Babu Rao -----

@app.get("/api/assistant/messages", response_model=List[ChatMessage])
def chat_history(bridge: AssistantBridge = Depends(get_assistant)):
    return bridge.messages


@app.post("/api/assistant/messages", response_model=ChatReply)
def ask_assistant(payload: ChatRequest, bridge: AssistantBridge = Depends(get_assistant)):
    if not payload.text.strip():
        raise HTTPException(status_code=400, detail="Kuch toh poocho re baba!")
    reply = bridge.send(payload.text)
    if reply is None:
        raise HTTPException(status_code=409, detail="Babu Rao soch raha hai...")
    return ChatReply(accepted=True, reply=reply, messages=bridge.messages)


@app.post("/api/assistant/voice", response_model=ChatReply)
async def voice_input(request: Request, bridge: AssistantBridge = Depends(get_assistant)):
    audio = await request.body()
    reply, guidance = await run_in_threadpool(bridge.listen, audio)
    if guidance:
        raise HTTPException(status_code=503, detail=guidance)
    return ChatReply(accepted=reply is not None, reply=reply, messages=bridge.messages)


# ----- Misc & Test -----

@app.get("/")
def read_root():
    return {"message": "Smart Khata API"}


@app.get("/test")
def test_storage(provide_khata=Depends(khata_provider)):
    response = {
        "backend": "✅ Running",
        "storage": "❌ Not Available",
    }
    try:
        khata = provide_khata()
        response["storage"] = f"✅ {khata.storage.describe()}"
        response["records"] = {
            "products": len(khata.products),
            "customers": len(khata.customers),
            "bills": len(khata.bills),
        }
    except Exception as e:
        response["storage"] = f"Error: {str(e)[:80]}"
    return response


if __name__ == "__main__":
    import uvicorn
    from logging_config import configure_logging

    configure_logging(os.getenv("LOG_DIR"), os.getenv("LOG_LEVEL", "INFO").upper())
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
