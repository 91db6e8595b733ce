from medops.safety.anti_evasion import (
    CONFLICT_LABEL,
    enforce_uncertainties,
    has_assertive_trigger,
    parse_uncertainty,
    scan_assertive_claims,
)


def test_scan_flags_severity_and_treatment_claims_without_anchor() -> None:
    ledger = scan_assertive_claims("Situação crítica, iniciei antibiótico.")
    assert ledger == [
        'Gravidade afirmada sem dados objetivos: "Situação crítica, iniciei antibiótico"',
        'Conduta iniciada sem documentação de base: "Situação crítica, iniciei antibiótico"',
    ]


def test_scan_skips_triggers_when_text_has_numeric_anchor() -> None:
    assert scan_assertive_claims("Paciente grave, PA 120x80.") == []


def test_scan_skips_triggers_when_vitals_have_numbers() -> None:
    assert scan_assertive_claims("Paciente grave.", {"spo2_initial": 95}) == []
    assert scan_assertive_claims("Paciente grave.", {"spo2": 95}) == []


def test_trigger_matching_ignores_accents_and_case() -> None:
    assert has_assertive_trigger("CRÍTICO")
    assert has_assertive_trigger("paciente critica")
    assert has_assertive_trigger("Tenho certeza do quadro")
    assert not has_assertive_trigger("Estou sem certeza do quadro")


def test_scan_flags_vague_saturation_without_number() -> None:
    ledger = scan_assertive_claims("Saturação baixa, paciente cansado.")
    assert ledger == ['Saturação vaga: "Saturação baixa, paciente cansado"']


def test_vague_vital_is_flagged_even_with_other_numeric_anchor() -> None:
    ledger = scan_assertive_claims("PA ok. FC 80 bpm.")
    assert ledger == ['Pressão arterial vaga: "PA ok"']


def test_conflicting_blood_pressure_readings_are_flagged() -> None:
    ledger = scan_assertive_claims("PA 120x80. Reavaliação PA 90x60.")
    assert f'{CONFLICT_LABEL} (PA): "Reavaliação PA 90x60"' in ledger


def test_room_air_and_oxygen_saturation_are_not_a_conflict() -> None:
    ledger = scan_assertive_claims("Sat 89% em ar ambiente. Sat 95% em O2 3 L/min.")
    assert not any(item.startswith(CONFLICT_LABEL) for item in ledger)


def test_long_fragment_quote_is_a_literal_window() -> None:
    text = "Paciente " + "com tosse seca " * 20 + "e quadro grave sem outras queixas"
    ledger = scan_assertive_claims(text)
    assert len(ledger) == 1
    _, quote = parse_uncertainty(ledger[0])
    assert quote in text
    assert len(quote) <= 180
    assert "grave" in quote


def test_enforce_repairs_bad_format_entries() -> None:
    result = enforce_uncertainties(
        {"uncertainties": ["paciente parece grave"]},
        "Paciente parece grave, FC 80.",
    )
    assert result.ledger == ['Afirmação sem evidência: "paciente parece grave"']
    assert result.forced is True
    assert "uncertainty_bad_format_fixed" in result.reasons


def test_enforce_marks_missing_uncertainty_list() -> None:
    result = enforce_uncertainties({}, "Tosse leve, exame ok.")
    assert result.ledger == []
    assert result.forced is True
    assert result.reasons == ["uncertainties_missing_or_not_array"]


def test_enforce_injects_prescan_entries() -> None:
    result = enforce_uncertainties({"uncertainties": []}, "Situação crítica, iniciei antibiótico.")
    assert len(result.ledger) == 2
    assert result.reasons == ["prescan_injected"]


def test_enforce_is_idempotent() -> None:
    text = "Situação crítica, iniciei antibiótico."
    first = enforce_uncertainties(
        {"uncertainties": ["x bad", 'Gravidade subjetiva: "q"', {"k": "v"}]},
        text,
    )
    second = enforce_uncertainties({"uncertainties": first.ledger, "vitals": None}, text)
    assert 'Afirmação sem evidência: "k: v"' in first.ledger
    assert second.ledger == first.ledger
    assert second.forced is False


def test_enforce_dedupes_case_insensitively() -> None:
    result = enforce_uncertainties(
        {"uncertainties": ['Gravidade subjetiva: "Confia"', 'gravidade subjetiva: "confia"']},
        "Paciente confia, FC 80.",
    )
    assert result.ledger == ['Gravidade subjetiva: "Confia"']


def test_parse_uncertainty_splits_on_first_separator() -> None:
    assert parse_uncertainty('Gravidade subjetiva: "ele disse: "confia""') == (
        "Gravidade subjetiva",
        'ele disse: "confia"',
    )
    assert parse_uncertainty("sem formato") == ("", "sem formato")


def test_plural_forms_are_flagged_with_literal_quotes() -> None:
    ledger = scan_assertive_claims("Já em uso de antibióticos, sem melhora. Pacientes graves no box.")
    assert ledger == [
        'Gravidade afirmada sem dados objetivos: "Pacientes graves no box"',
        'Conduta iniciada sem documentação de base: "Já em uso de antibióticos, sem melhora"',
    ]
