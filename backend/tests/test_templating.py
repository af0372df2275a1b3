"""Tests for message template rendering."""

from datetime import datetime, timezone

import pytest

from automation.context import ActionContext, SubjectSnapshot
from automation.templating import format_brl, render

NOW = datetime(2026, 3, 2, 14, 5, 9, tzinfo=timezone.utc)


def _context(trigger=None, subject=True):
    snapshot = None
    if subject:
        snapshot = SubjectSnapshot.from_dict(
            {
                "id": "lead-1",
                "name": "Maria Silva",
                "phone": "11987654321",
                "email": "maria@example.com",
                "tag_ids": ["b", "a"],
                "city": "Campinas",
            }
        )
    return ActionContext(
        organization_id="org-1",
        run_id="run-1",
        graph_id="g1",
        node_id="n1",
        subject=snapshot,
        trigger=trigger or {},
    )


@pytest.mark.unit
class TestRender:
    def test_lead_fields(self):
        assert render("Olá {{lead.name}} ({{lead.email}})", _context()) == "Olá Maria Silva (maria@example.com)"

    def test_free_form_lead_attribute(self):
        assert render("{{ lead.city }}", _context()) == "Campinas"

    def test_tag_list(self):
        assert render("{{lead.tag_ids}}", _context()) == "a, b"

    def test_date_and_time(self):
        assert render("{{date}} {{time}}", _context(), now=NOW) == "02/03/2026 14:05:09"

    def test_contact_prefers_trigger_payload(self):
        context = _context(trigger={"contact_name": "Maria S.", "contact_phone": "5511999990000"})
        assert render("{{contact_name}} {{contact_phone}}", context) == "Maria S. 5511999990000"

    def test_contact_falls_back_to_lead(self):
        assert render("{{contact_name}}", _context()) == "Maria Silva"

    def test_nested_trigger_field(self):
        context = _context(trigger={"message": {"text": "oi"}})
        assert render("Recebido: {{trigger.message.text}}", context) == "Recebido: oi"

    def test_unknown_variables_render_empty(self):
        assert render("[{{foo}}][{{lead.nope}}][{{trigger.x.y}}]", _context()) == "[][][]"

    def test_without_subject(self):
        assert render("Olá {{lead.name}}", _context(subject=False)) == "Olá "

    def test_empty_template(self):
        assert render(None, _context()) == ""
        assert render("", _context()) == ""


def _telecom_context(**overrides):
    data = {
        "id": "lead-1",
        "name": "Maria Silva",
        "valor_interesse": 1234.56,
        "organization": {"name": "Fibra Sul"},
        "customer": {
            "address": "Rua das Flores, 10",
            "city": "Campinas",
            "neighborhood": "Cambuí",
            "cep": "13025-000",
            "cpf_cnpj": "123.456.789-00",
            "contracted_plan": "Fibra 500",
            "plan_value": "99.9",
            "reference_point": "Perto da praça",
        },
    }
    data.update(overrides)
    return ActionContext(
        organization_id="org-1",
        run_id="run-1",
        graph_id="g1",
        node_id="n1",
        subject=SubjectSnapshot.from_dict(data),
    )


@pytest.mark.unit
class TestOrganizationAndCustomer:
    def test_organization_name(self):
        assert render("Equipe {{organization.name}}", _telecom_context()) == "Equipe Fibra Sul"

    def test_customer_fields(self):
        template = (
            "{{customer.address}} - {{customer.neighborhood}}, {{customer.city}} {{customer.cep}} | "
            "{{customer.cpf_cnpj}} | {{customer.contracted_plan}} | {{customer.reference_point}}"
        )
        assert render(template, _telecom_context()) == (
            "Rua das Flores, 10 - Cambuí, Campinas 13025-000 | 123.456.789-00 | Fibra 500 | Perto da praça"
        )

    def test_money_fields_use_brl_format(self):
        context = _telecom_context()
        assert render("{{lead.valor_interesse}}", context) == "R$ 1.234,56"
        assert render("Plano por {{customer.plan_value}}/mês", context) == "Plano por R$ 99,90/mês"

    def test_missing_records_render_empty(self):
        context = _telecom_context(organization=None, customer=None, valor_interesse=None)
        assert render("[{{organization.name}}][{{customer.city}}][{{lead.valor_interesse}}]", context) == "[][][]"
        assert render("[{{customer.city}}]", _context(subject=False)) == "[]"


@pytest.mark.unit
class TestFormatBrl:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (1234.56, "R$ 1.234,56"),
            ("1500", "R$ 1.500,00"),
            (1234567.8, "R$ 1.234.567,80"),
            (0.5, "R$ 0,50"),
            (0, ""),
            (None, ""),
            ("", ""),
            ("a combinar", "a combinar"),
        ],
    )
    def test_format(self, value, expected):
        assert format_brl(value) == expected
