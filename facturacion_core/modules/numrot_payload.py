"""
FACTURACION-CORE: Constructor de payloads Numrot (FC/NC/ND/DS)
==============================================================
Convierte un documento OpenETL en el JSON UBL que espera Numrot en
SendDIAN/Json/Pdf (FC/NC/ND) y documentSinc (DS).

REGLAS DEL GATEWAY:
- NC/ND: InvoiceControl solo lleva Prefix (NC/ND por defecto)
- DS: InvoiceTypeCode siempre "05", sin TaxTotal, TaxExclusiveAmount "0.00"
- DS: roles invertidos; el proveedor es el emisor y el OFE es el adquiriente
- IssueTime sin offset se completa con "-05:00"
- LineExtensionAmount de cada linea es el valor unitario
- TaxTotal agrupado por tri_codigo; grupos en cero se omiten
"""
from typing import Any, Optional

from facturacion_core.core.config import settings
from facturacion_core.schemas.models import Acquirer, OpenETLDocument
from facturacion_core.utils.document_helpers import (
    combine_emails, format_amount, is_zero_amount, map_unit_code,
    normalize_monetary_value, parse_amount, parse_nit_with_dv, tax_name,
)

DEFAULT_CUSTOMIZATION = {"FC": "10", "NC": "22", "ND": "32", "DS": "10"}
NIT_SCHEME = "31"
TAX_LEVEL = "R-99-PN"
DS_STANDARD_SCHEME = ("999", "Estándar de adopción del contribuyente")


class NumrotPayloadBuilder:
    def __init__(self, config=None):
        self.config = config or settings

    def build(self, doc: OpenETLDocument, document_type: str,
              acquirer: Optional[Acquirer] = None) -> dict:
        if not doc.ofe_identificacion:
            raise ValueError("ofe_identificacion is required")
        is_ds = document_type == "DS"
        customization = doc.top_codigo or DEFAULT_CUSTOMIZATION.get(document_type, "10")
        invoice_type = "05" if is_ds else doc.tde_codigo

        tax_totals = self._tax_totals(doc) if not is_ds else []
        payload: dict[str, Any] = {
            "InvoiceControl": self._invoice_control(doc, document_type),
            "CustomizationID": customization,
            "ProfileExecutionID": "1" if doc.cdo_ambiente == "1" else "2",
            "ID": doc.rfa_prefijo + doc.cdo_consecutivo,
            "IssueDate": doc.cdo_fecha,
            "IssueTime": self._issue_time(doc.cdo_hora),
            "InvoiceTypeCode": invoice_type,
            "DocumentCurrencyCode": doc.mon_codigo,
            "LineCountNumeric": str(len(doc.items)),
        }
        if doc.cdo_vencimiento:
            payload["DueDate"] = doc.cdo_vencimiento
        if doc.note:
            payload["Note"] = list(doc.note)
        if doc.order_reference and doc.order_reference.id:
            payload["OrderReference"] = {"ID": doc.order_reference.id}

        payload["AccountingSupplierParty"] = (
            self._ds_supplier(doc) if is_ds else self._supplier(doc))
        payload["AccountingCustomerParty"] = (
            self._ds_customer(doc) if is_ds else self._customer(doc, acquirer))

        means = self._payment_means(doc)
        if means:
            payload["PaymentMeans"] = means
        prepaid = self._prepaid(doc)
        if prepaid:
            payload["PrePaidPayment"] = prepaid
        if is_ds:
            payload["PaymentExchangeRate"] = self._exchange_rate(doc)

        period = self._nc_period(customization)
        if period:
            payload["InvoicePeriod"] = period
        self._discrepancy(payload, doc, customization)

        if tax_totals:
            payload["TaxTotal"] = tax_totals
        payload["LegalMonetaryTotal"] = self._monetary_total(doc, is_ds, bool(tax_totals))
        payload["InvoiceLine"] = [
            self._line(item, doc, is_ds, str(i)) for i, item in enumerate(doc.items, 1)
        ]
        return payload

    # === CONTROL ===
    def _invoice_control(self, doc: OpenETLDocument, document_type: str) -> dict:
        if document_type in ("NC", "ND"):
            return {"InvoiceAuthorization": "", "StartDate": "", "EndDate": "",
                    "Prefix": doc.rfa_prefijo or document_type, "From": "", "To": ""}
        control = {
            "InvoiceAuthorization": doc.rfa_resolucion,
            "StartDate": doc.rfa_fecha_inicio or "", "EndDate": doc.rfa_fecha_fin or "",
            "Prefix": doc.rfa_prefijo,
            "From": doc.rfa_numero_inicio or "", "To": doc.rfa_numero_fin or "",
        }
        if not self.config.numrot_resolutions_enabled:
            c = self.config
            fallbacks = {
                "InvoiceAuthorization": c.numrot_hardcoded_invoice_auth,
                "StartDate": c.numrot_hardcoded_start_date, "EndDate": c.numrot_hardcoded_end_date,
                "Prefix": c.numrot_hardcoded_prefix,
                "From": c.numrot_hardcoded_from, "To": c.numrot_hardcoded_to,
            }
            for key, value in fallbacks.items():
                if not control[key] and value:
                    control[key] = value
        return control

    @staticmethod
    def _issue_time(hora: str) -> str:
        if "-" in hora or "+" in hora:
            return hora
        return hora + "-05:00"

    # === PAGOS ===
    @staticmethod
    def _payment_means(doc: OpenETLDocument) -> list[dict]:
        return [{
            "ID": mp.fpa_codigo or "1", "PaymentMeansCode": mp.mpa_codigo,
            "PaymentDueDate": mp.men_fecha_vencimiento, "PaymentID": [mp.mpa_codigo],
        } for mp in doc.cdo_medios_pago]

    @staticmethod
    def _prepaid(doc: OpenETLDocument) -> list[dict]:
        if is_zero_amount(doc.cdo_anticipo):
            return []
        amount = parse_amount(doc.cdo_anticipo)
        if amount is None or amount <= 0:
            return []
        return [{"ID": "1", "CurrencyID": doc.mon_codigo,
                 "PaidAmount": doc.cdo_anticipo, "ReceivedDate": doc.cdo_fecha}]

    @staticmethod
    def _exchange_rate(doc: OpenETLDocument) -> dict:
        date = doc.cdo_fecha
        if doc.items and doc.items[0].ddo_fecha_compra and doc.items[0].ddo_fecha_compra.fecha_compra:
            date = doc.items[0].ddo_fecha_compra.fecha_compra
        return {
            "SourceCurrencyCode": doc.mon_codigo, "SourceCurrencyBaseRate": "1.00",
            "TargetCurrencyCode": doc.mon_codigo, "TargetCurrencyBaseRate": "1.00",
            "CalculationRate": "1", "Date": date,
        }

    def _nc_period(self, customization: str) -> Optional[dict]:
        c = self.config
        if customization != "22" or not (c.numrot_nc_invoice_period_start_date and c.numrot_nc_invoice_period_end_date):
            return None
        return {
            "StartDate": c.numrot_nc_invoice_period_start_date,
            "StartTime": c.numrot_nc_invoice_period_start_time,
            "EndDate": c.numrot_nc_invoice_period_end_date,
            "EndTime": c.numrot_nc_invoice_period_end_time,
        }

    @staticmethod
    def _discrepancy(payload: dict, doc: OpenETLDocument, customization: str) -> None:
        if customization not in ("20", "30"):
            return
        ref, concept = doc.factura_referencia, doc.cdo_conceptos_correccion
        if ref is None or concept is None:
            return
        reference_id = ref.prefijo_fc + ref.numero_factura_fc
        if not (reference_id and concept.cco_codigo and concept.cdo_observacion_correccion):
            return
        payload["DiscrepancyResponse"] = [{
            "ReferenceID": reference_id, "ResponseCode": concept.cco_codigo,
            "Description": [concept.cdo_observacion_correccion],
        }]
        payload["InvoiceDocumentReference"] = {"ID": reference_id}

    # === IMPUESTOS ===
    def _tax_totals(self, doc: OpenETLDocument) -> list[dict]:
        rounding = None if is_zero_amount(doc.cdo_redondeo) else normalize_monetary_value(doc.cdo_redondeo)
        groups: dict[str, dict] = {}
        for tributo in doc.tributos:
            code = tributo.tri_codigo or "01"
            group = groups.setdefault(code, {
                "TaxAmount": "0.00", "RoundingAmount": rounding,
                "CurrencyID": doc.mon_codigo, "TaxSubtotal": [],
            })
            pct = tributo.iid_porcentaje
            group["TaxSubtotal"].append({
                "TaxableAmount": pct.iid_base if pct else "0.00",
                "TaxAmount": tributo.iid_valor,
                "Percent": pct.iid_porcentaje if pct else "0.00",
                "CurrencyID": doc.mon_codigo, "ID": code, "Name": tax_name(code),
            })

        totals = []
        for group in groups.values():
            total = sum(parse_amount(s["TaxAmount"]) or 0.0 for s in group["TaxSubtotal"])
            group["TaxAmount"] = format_amount(total)
            if total > 0:
                totals.append(group)
        if totals:
            return totals

        if is_zero_amount(doc.cdo_impuestos):
            return []
        return [{
            "TaxAmount": doc.cdo_impuestos, "RoundingAmount": rounding, "CurrencyID": doc.mon_codigo,
            "TaxSubtotal": [{
                "TaxableAmount": doc.cdo_valor_sin_impuestos, "TaxAmount": doc.cdo_impuestos,
                "Percent": "0.00", "CurrencyID": doc.mon_codigo, "ID": "01", "Name": "IVA",
            }],
        }]

    @staticmethod
    def _monetary_total(doc: OpenETLDocument, is_ds: bool, has_taxes: bool) -> dict:
        return {
            "LineExtensionAmount": doc.cdo_valor_sin_impuestos,
            "TaxExclusiveAmount": doc.cdo_valor_sin_impuestos if (has_taxes and not is_ds) else "0.00",
            "TaxInclusiveAmount": doc.cdo_total,
            "AllowanceTotalAmount": "0.00",
            "PrePaidAmount": doc.cdo_anticipo if is_ds else normalize_monetary_value(doc.cdo_anticipo),
            "PayableAmount": doc.cdo_total,
            "CurrencyID": doc.mon_codigo,
        }

    # === LINEAS ===
    def _line(self, item, doc: OpenETLDocument, is_ds: bool, line_id: str) -> dict:
        unit = map_unit_code(item.und_codigo)
        product: dict[str, Any] = {"Description": item.ddo_descripcion_uno}
        if item.ddo_codigo:
            product["SellersItemIdentification"] = {"ID": item.ddo_codigo}
            standard = {"ID": item.ddo_codigo}
            if is_ds:
                standard["SchemeID"], standard["SchemeName"] = DS_STANDARD_SCHEME
            product["StandardItemIdentification"] = standard

        line: dict[str, Any] = {
            "ID": line_id,
            "InvoicedQuantity": item.ddo_cantidad, "InvoicedQuantityUnitCode": unit,
            "LineExtensionAmount": item.ddo_valor_unitario, "CurrencyID": doc.mon_codigo,
            "Item": product,
            "Price": {"PriceAmount": item.ddo_valor_unitario, "CurrencyID": doc.mon_codigo,
                      "BaseQuantity": item.ddo_cantidad, "BaseQuantityUnitCode": unit},
        }
        if is_ds:
            line["Note"] = ["", ""]
        purchase = item.ddo_fecha_compra
        if purchase and purchase.fecha_compra:
            line["InvoicePeriod"] = {
                "StartDate": purchase.fecha_compra, "DescriptionCode": purchase.codigo,
                "Description": "Por operación" if purchase.codigo == "1" else purchase.codigo,
            }
        if not is_ds:
            taxes = self._line_taxes(item, doc)
            if taxes:
                line["TaxTotal"] = taxes
        return line

    @staticmethod
    def _line_taxes(item, doc: OpenETLDocument) -> list[dict]:
        taxes = []
        for tributo in doc.tributos:
            if tributo.ddo_secuencia != item.ddo_secuencia:
                continue
            amount = parse_amount(tributo.iid_valor)
            if amount is None or amount <= 0:
                continue
            pct = tributo.iid_porcentaje
            taxes.append({
                "TaxAmount": tributo.iid_valor, "RoundingAmount": "0.00", "CurrencyID": doc.mon_codigo,
                "TaxSubtotal": [{
                    "TaxableAmount": pct.iid_base if pct else item.ddo_total,
                    "TaxAmount": tributo.iid_valor,
                    "Percent": pct.iid_porcentaje if pct else "0.00",
                    "CurrencyID": doc.mon_codigo, "ID": tributo.tri_codigo,
                    "Name": tax_name(tributo.tri_codigo),
                }],
            })
        return taxes

    # === PARTES FC/NC/ND ===
    def _supplier(self, doc: OpenETLDocument) -> dict:
        base, dv = parse_nit_with_dv(doc.ofe_identificacion)
        company_id = base or doc.ofe_identificacion
        scheme_id = dv or ("6" if doc.cdo_ambiente == "1" else "2")
        name = doc.ofe_razon_social or company_id
        location = {
            "ID": doc.ofe_municipio_codigo or "", "CityName": doc.ofe_municipio_nombre or "",
            "PostalZone": doc.ofe_municipio_codigo or "",
            "CountrySubentity": doc.ofe_departamento_nombre or "",
            "CountrySubentityCode": doc.ofe_departamento_codigo or "",
            "Line": doc.ofe_direccion or "", "IdentificationCode": "CO", "Name": "Colombia",
        }
        return {
            "AdditionalAccountID": "1", "Name": name, "SchemeName": NIT_SCHEME,
            "PhysicalLocation": location,
            "PartyTaxScheme": {
                "RegistrationName": name, "CompanyID": company_id, "SchemeID": scheme_id,
                "SchemeName": NIT_SCHEME, "TaxLevelCode": TAX_LEVEL,
                "RegistrationAddress": location, "TaxScheme": {"ID": "01", "Name": "IVA"},
            },
            "PartyLegalEntity": {
                "RegistrationName": name, "CompanyID": company_id, "SchemeID": scheme_id,
                "SchemeName": NIT_SCHEME, "ID": doc.rfa_prefijo,
            },
            "Contact": {"Name": "", "Telephone": "", "Telefax": "",
                        "ElectronicMail": self.config.ofe_contact_email},
        }

    def _customer(self, doc: OpenETLDocument, acquirer: Optional[Acquirer]) -> dict:
        name = doc.adq_razon_social or doc.adq_identificacion
        scheme_name = (acquirer.tdo_codigo if acquirer else "") or "13"
        account_id = (acquirer.toj_codigo if acquirer else "") or "2"
        location = self._customer_location(doc)
        party = {
            "AdditionalAccountID": account_id, "ID": doc.adq_identificacion,
            "Name": name, "SchemeName": scheme_name, "PhysicalLocation": location,
            "PartyTaxScheme": {
                "RegistrationName": name, "CompanyID": doc.adq_identificacion,
                "SchemeName": scheme_name, "TaxLevelCode": TAX_LEVEL,
                "RegistrationAddress": location, "TaxScheme": {"ID": "ZZ", "Name": "No aplica"},
            },
            "PartyLegalEntity": [{
                "RegistrationName": name, "CompanyID": doc.adq_identificacion,
                "SchemeName": scheme_name,
            }],
        }
        contact = self._customer_contact(acquirer) if acquirer else None
        if contact:
            party["Contact"] = contact
        return party

    @staticmethod
    def _customer_location(doc: OpenETLDocument) -> dict:
        mun = doc.adq_municipio_codigo or ""
        dep = doc.adq_departamento_codigo or ""
        return {
            "ID": (dep + mun) or mun, "CityName": doc.adq_municipio_nombre or "",
            "PostalZone": doc.adq_cpo_codigo or mun,
            "CountrySubentity": doc.adq_departamento_nombre or "", "CountrySubentityCode": dep,
            "Line": doc.adq_direccion or "",
            "IdentificationCode": doc.adq_pais_codigo or "CO", "Name": doc.adq_pais_nombre or "Colombia",
        }

    @staticmethod
    def _customer_contact(acq: Acquirer) -> Optional[dict]:
        name = phone = email = ""
        for contact in acq.contactos:
            if contact.con_tipo == "AccountingContact":
                name, phone, email = contact.con_nombre, contact.con_telefono or "", contact.con_correo or ""
                break
        name = name or acq.adq_nombre_contacto or acq.adq_razon_social
        phone = phone or acq.adq_telefono or ""
        if not phone:
            return None
        return {
            "Name": name, "Telephone": phone, "Telefax": acq.adq_fax or "",
            "ElectronicMail": combine_emails(email, acq.adq_correo, acq.adq_correos_notificacion),
        }

    # === PARTES DS (roles invertidos) ===
    def _ds_supplier(self, doc: OpenETLDocument) -> dict:
        name = doc.adq_razon_social or doc.ofe_identificacion
        base, _ = parse_nit_with_dv(doc.ofe_identificacion)
        c = self.config
        location = {
            "ID": c.ofe_municipio_codigo, "CityName": c.ofe_municipio_nombre,
            "PostalZone": c.ofe_postal_zone, "CountrySubentity": c.ofe_departamento_nombre,
            "CountrySubentityCode": c.ofe_departamento_codigo, "Line": c.ofe_direccion,
            "IdentificationCode": "CO", "Name": "Colombia",
        }
        return {
            "AdditionalAccountID": "1", "Name": name, "SchemeName": NIT_SCHEME,
            "PhysicalLocation": location,
            "PartyTaxScheme": {
                "RegistrationName": name, "CompanyID": base or doc.ofe_identificacion,
                "SchemeID": None, "SchemeName": NIT_SCHEME, "TaxLevelCode": TAX_LEVEL,
                "RegistrationAddress": location, "TaxScheme": {"ID": "01", "Name": "IVA"},
            },
            "PartyLegalEntity": {"ID": "SEDS"},
        }

    def _ds_customer(self, doc: OpenETLDocument) -> dict:
        name = self.config.ofe_razon_social
        base, dv = parse_nit_with_dv(doc.adq_identificacion)
        return {
            "AdditionalAccountID": "1", "Name": name, "SchemeName": NIT_SCHEME,
            "PartyTaxScheme": {
                "RegistrationName": name, "CompanyID": base or doc.adq_identificacion,
                "SchemeID": dv or "6", "SchemeName": NIT_SCHEME, "TaxLevelCode": TAX_LEVEL,
                "TaxScheme": {"ID": "ZZ", "Name": "No aplica"},
            },
        }
