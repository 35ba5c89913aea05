"""
Envelopes XML da maxiPago
=========================

Um builder tipado por formato de requisição. Todo valor passa pelo
ElementTree, que escapa `&`, `<` e `>` ao serializar; nenhum XML é
montado por concatenação de strings.

Endpoints:
    transaction-request  -> UniversalAPI/postXML   (venda direta / PIX / onFile)
    api-request          -> UniversalAPI/postAPI   (add-consumer, add-card-onfile)
    rapi-request         -> ReportsAPI/servlet/ReportsAPI
"""

import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional, Union

from farmapay.core.utils.validators import only_digits, format_cpf, format_phone, format_zip

API_VERSION = "3.1.1.15"
PIX_EXPIRATION_SECONDS = 86400
PIX_PAYMENT_INFO = "Pedido Farmapay"
ANONYMOUS_CUSTOMER_ID_EXT = "00000000000"

# Valores usados quando o comprador não informou o campo (obrigatórios no XML)
DEFAULT_BIRTH_DATE = "1980-01-01"
DEFAULT_STATE = "MG"
DEFAULT_PHONE_AREA_CODE = "11"
DEFAULT_PHONE_NUMBER = "999999999"


@dataclass
class MerchantCredentials:
    merchant_id: str
    merchant_key: str
    processor_id: str = "1"


@dataclass
class BuyerContact:
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    cpf: Optional[str] = None
    address: Optional[str] = None
    number: Optional[str] = None
    complement: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postalcode: Optional[str] = None
    birth_date: Optional[date] = None

    @property
    def customer_id_ext(self) -> str:
        return only_digits(self.cpf) or ANONYMOUS_CUSTOMER_ID_EXT


@dataclass
class CardDetails:
    number: str
    holder_name: str
    exp_month: str
    exp_year: str
    cvv: str
    installments: int = 1

    @property
    def last4(self) -> str:
        return only_digits(self.number)[-4:]


@dataclass
class OnFileCard:
    consumer_id: str
    token: str
    cvv: str


# ═══════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════

def _sub(parent: ET.Element, tag: str, text: Optional[Union[str, int]] = None) -> ET.Element:
    element = ET.SubElement(parent, tag)
    if text is not None:
        element.text = str(text)
    return element


def _verification(root: ET.Element, credentials: MerchantCredentials) -> None:
    verification = _sub(root, "verification")
    _sub(verification, "merchantId", credentials.merchant_id)
    _sub(verification, "merchantKey", credentials.merchant_key)


def _format_amount(amount_in_cents: int) -> str:
    return str((Decimal(amount_in_cents) / 100).quantize(Decimal("0.01")))


def _split_name(name: str) -> tuple:
    parts = (name or "").strip().split(" ", 1)
    first = parts[0] or "Cliente"
    last = parts[1] if len(parts) > 1 else first
    return first, last


def to_xml(element: ET.Element) -> bytes:
    return ET.tostring(element, encoding="utf-8", xml_declaration=True)


# ═══════════════════════════════════════════════════════════
# BLOCOS DE CONTATO
# ═══════════════════════════════════════════════════════════

def build_contact_block(tag: str, contact: BuyerContact) -> ET.Element:
    """Bloco `<billing>` / `<shipping>` com telefone e documento formatados"""
    block = ET.Element(tag)
    phone_digits = only_digits(contact.phone)

    _sub(block, "name", contact.name or "Cliente")
    _sub(block, "address", contact.address or "Não informado")
    _sub(block, "address2", contact.number or "S/N")
    _sub(block, "city", contact.city or "Não informado")
    _sub(block, "state", contact.state or DEFAULT_STATE)
    _sub(block, "postalcode", format_zip(contact.postalcode))
    _sub(block, "country", "BR")
    _sub(block, "phone", format_phone(contact.phone))
    _sub(block, "email", contact.email or "")
    _sub(block, "type", "Individual")
    _sub(block, "gender", "M")
    _sub(block, "birthDate", contact.birth_date.isoformat() if contact.birth_date else DEFAULT_BIRTH_DATE)

    phones = _sub(block, "phones")
    phone = _sub(phones, "phone")
    _sub(phone, "phoneType", "Mobile")
    _sub(phone, "phoneCountryCode", "55")
    _sub(phone, "phoneAreaCode", phone_digits[:2] or DEFAULT_PHONE_AREA_CODE)
    _sub(phone, "phoneNumber", phone_digits[2:] or DEFAULT_PHONE_NUMBER)

    documents = _sub(block, "documents")
    document = _sub(documents, "document")
    _sub(document, "documentType", "CPF")
    _sub(document, "documentValue", format_cpf(contact.cpf))

    return block


# ═══════════════════════════════════════════════════════════
# TRANSACTION REQUEST (venda)
# ═══════════════════════════════════════════════════════════

def build_sale_request(
    credentials: MerchantCredentials,
    reference: str,
    amount_in_cents: int,
    customer: Optional[BuyerContact] = None,
    pix: bool = False,
    card: Optional[CardDetails] = None,
    on_file: Optional[OnFileCard] = None,
    installments: int = 1,
) -> ET.Element:
    """
    Monta um `<transaction-request>` de venda.

    Exatamente um meio: `pix=True`, `card` (número em claro) ou
    `on_file` (token gerado pelo add-card-onfile).
    """
    chosen = [m for m in (pix, card is not None, on_file is not None) if m]
    if len(chosen) != 1:
        raise ValueError("Informe exatamente um meio de pagamento: pix, card ou on_file")

    root = ET.Element("transaction-request")
    _sub(root, "version", API_VERSION)
    _verification(root, credentials)

    order = _sub(root, "order")
    sale = _sub(order, "sale")
    _sub(sale, "processorID", credentials.processor_id)
    _sub(sale, "referenceNum", reference)
    _sub(sale, "fraudCheck", "N")

    if customer is not None:
        _sub(sale, "customerIdExt", customer.customer_id_ext)
        sale.append(build_contact_block("billing", customer))
        sale.append(build_contact_block("shipping", customer))

    detail = _sub(sale, "transactionDetail")
    pay_type = _sub(detail, "payType")

    if pix:
        pix_el = _sub(pay_type, "pix")
        _sub(pix_el, "expirationTime", PIX_EXPIRATION_SECONDS)
        _sub(pix_el, "paymentInfo", PIX_PAYMENT_INFO)
    elif card is not None:
        card_el = _sub(pay_type, "creditCard")
        _sub(card_el, "number", only_digits(card.number))
        _sub(card_el, "expMonth", card.exp_month)
        _sub(card_el, "expYear", card.exp_year)
        _sub(card_el, "cvvNumber", card.cvv)
    else:
        on_file_el = _sub(pay_type, "onFile")
        _sub(on_file_el, "customerId", on_file.consumer_id)
        _sub(on_file_el, "token", on_file.token)
        _sub(on_file_el, "cvvNumber", on_file.cvv)

    payment = _sub(sale, "payment")
    _sub(payment, "chargeTotal", _format_amount(amount_in_cents))

    if not pix:
        installment = _sub(payment, "creditInstallment")
        _sub(installment, "numberOfInstallments", max(1, installments or 1))
        _sub(installment, "chargeInterest", "N")

    return root


# ═══════════════════════════════════════════════════════════
# API REQUEST (cadastro de comprador / tokenização)
# ═══════════════════════════════════════════════════════════

def _api_request(credentials: MerchantCredentials, command: str) -> tuple:
    root = ET.Element("api-request")
    _verification(root, credentials)
    _sub(root, "command", command)
    return root, _sub(root, "request")


def build_add_consumer_request(credentials: MerchantCredentials, customer: BuyerContact) -> ET.Element:
    """`add-consumer`: registra o comprador, chaveado pelo CPF (customerIdExt)"""
    root, request = _api_request(credentials, "add-consumer")
    first, last = _split_name(customer.name)

    _sub(request, "customerIdExt", customer.customer_id_ext)
    _sub(request, "firstName", first)
    _sub(request, "lastName", last)
    _sub(request, "address1", customer.address or "")
    _sub(request, "address2", customer.number or "")
    _sub(request, "city", customer.city or "")
    _sub(request, "state", customer.state or DEFAULT_STATE)
    _sub(request, "zip", only_digits(customer.postalcode))
    _sub(request, "country", "BR")
    _sub(request, "phone", only_digits(customer.phone))
    _sub(request, "email", customer.email or "")
    if customer.birth_date:
        _sub(request, "dob", customer.birth_date.strftime("%m/%d/%Y"))
    _sub(request, "ssn", only_digits(customer.cpf))
    return root


def build_add_card_request(
    credentials: MerchantCredentials,
    consumer_id: str,
    card: CardDetails,
    customer: BuyerContact,
) -> ET.Element:
    """`add-card-onfile`: tokeniza o cartão vinculado ao comprador registrado"""
    root, request = _api_request(credentials, "add-card-onfile")

    _sub(request, "customerId", consumer_id)
    _sub(request, "creditCardNumber", only_digits(card.number))
    _sub(request, "expirationMonth", card.exp_month)
    _sub(request, "expirationYear", card.exp_year)
    _sub(request, "billingName", card.holder_name)
    _sub(request, "billingAddress1", customer.address or "")
    _sub(request, "billingAddress2", customer.number or "")
    _sub(request, "billingCity", customer.city or "")
    _sub(request, "billingState", customer.state or DEFAULT_STATE)
    _sub(request, "billingZip", only_digits(customer.postalcode))
    _sub(request, "billingCountry", "BR")
    _sub(request, "billingPhone", only_digits(customer.phone))
    _sub(request, "billingEmail", customer.email or "")
    return root


# ═══════════════════════════════════════════════════════════
# RAPI REQUEST (relatórios / health check)
# ═══════════════════════════════════════════════════════════

def build_report_request(credentials: MerchantCredentials, transaction_id: str) -> ET.Element:
    root = ET.Element("rapi-request")
    _verification(root, credentials)
    _sub(root, "command", "transactionDetailReport")
    request = _sub(root, "request")
    filter_options = _sub(request, "filterOptions")
    _sub(filter_options, "transactionId", transaction_id)
    return root


# ═══════════════════════════════════════════════════════════
# PARSING
# ═══════════════════════════════════════════════════════════

def _to_dict(element: ET.Element) -> dict:
    data = {}
    for child in element:
        if len(child):
            data[child.tag] = _to_dict(child)
        else:
            data[child.tag] = (child.text or "").strip()
    return data


def parse_response(xml_payload: Union[str, bytes], expected_root: str) -> dict:
    """
    Converte a resposta em dict plano (filhos aninhados viram dicts).

    Raises:
        ValueError: XML malformado ou raiz diferente da esperada
    """
    try:
        root = ET.fromstring(xml_payload)
    except ET.ParseError as e:
        raise ValueError(f"XML inválido: {e}")

    if root.tag != expected_root:
        raise ValueError(f"Resposta inesperada: <{root.tag}> (esperado <{expected_root}>)")

    return _to_dict(root)
