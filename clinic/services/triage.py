"""
Triage scoring for the OPD queue.

Vitals, pain and the words of the complaint each add points; some
findings are also red flags.  The total (or an immediately dangerous
red flag) decides the level, and the level decides where the patient
sits in the day's queue.
"""
from __future__ import annotations

import re
from decimal import Decimal
from typing import Optional

from clinic.models import OpdAppointment

A = OpdAppointment

# phrase -> points; every match is also a red flag
CRITICAL_SYMPTOMS = {
    'chest pain': 4,
    'difficulty breathing': 4,
    'stroke': 4,
    'seizure': 4,
    'unconscious': 4,
    'severe bleeding': 4,
    'head injury': 3,
    'abdominal pain': 2,
    'vomiting blood': 4,
    'confusion': 3,
}

# any of these sends the patient straight to emergency
EMERGENCY_FLAGS = {
    'Critical hypoxia', 'Hypertensive crisis', 'Chest pain', 'Difficulty breathing', 'Stroke', 'Seizure',
    'Unconscious', 'Severe bleeding', 'Vomiting blood',
}

LEVEL_ORDER = {
    A.LEVEL_EMERGENCY: 1,
    A.LEVEL_URGENT: 2,
    A.LEVEL_NON_URGENT: 3,
    A.LEVEL_ROUTINE: 4,
}
UNTRIAGED_ORDER = 5

BP_RE = re.compile(r'(\d+)\s*/\s*(\d+)')


def _score_vitals(data: dict, flags: list) -> int:
    score = 0
    temp = data.get('temperature')
    if temp is not None:
        temp = Decimal(str(temp))
        if temp >= Decimal('39.5') or temp <= 35:
            score += 3
            flags.append('High fever' if temp >= Decimal('39.5') else 'Hypothermia')
        elif temp >= Decimal('38.5') or temp <= Decimal('35.5'):
            score += 2

    match = BP_RE.search(data.get('blood_pressure') or '')
    if match:
        systolic, diastolic = int(match.group(1)), int(match.group(2))
        if systolic >= 180 or systolic < 90 or diastolic >= 120 or diastolic < 60:
            score += 3
            flags.append('Hypertensive crisis' if systolic >= 180 else 'Hypotension')
        elif systolic >= 160 or systolic < 100:
            score += 2

    hr = data.get('heart_rate')
    if hr is not None:
        if hr >= 120 or hr < 50:
            score += 3
            flags.append('Tachycardia' if hr >= 120 else 'Bradycardia')
        elif hr >= 100 or hr < 60:
            score += 2

    rr = data.get('respiratory_rate')
    if rr is not None:
        if rr >= 30 or rr < 10:
            score += 3
            flags.append('Tachypnea' if rr >= 30 else 'Bradypnea')
        elif rr >= 24 or rr < 12:
            score += 2

    spo2 = data.get('oxygen_saturation')
    if spo2 is not None:
        if spo2 < 90:
            score += 4
            flags.append('Critical hypoxia')
        elif spo2 < 94:
            score += 3
            flags.append('Hypoxia')
        elif spo2 < 96:
            score += 1
    return score


def _score_pain(pain: Optional[int], flags: list) -> int:
    if pain is None:
        return 0
    if pain >= 8:
        flags.append('Severe pain')
        return 3
    if pain >= 5:
        return 2
    if pain >= 3:
        return 1
    return 0


def _score_symptoms(text: str, flags: list) -> int:
    text = text.lower()
    score = 0
    for phrase, points in CRITICAL_SYMPTOMS.items():
        if phrase in text:
            score += points
            flags.append(phrase.capitalize())
    return score


def level_for(score: int, flags) -> str:
    if score >= 10 or EMERGENCY_FLAGS.intersection(flags):
        return A.LEVEL_EMERGENCY
    if score >= 6:
        return A.LEVEL_URGENT
    if score >= 3:
        return A.LEVEL_NON_URGENT
    return A.LEVEL_ROUTINE


def assess(data: dict, chief_complaint: str = '') -> dict:
    """Score a set of vitals and notes.

    Returns ``{'score', 'level', 'red_flags'}``.  Missing vitals add
    nothing.
    """
    flags: list[str] = []
    score = _score_vitals(data, flags)
    score += _score_pain(data.get('pain_level'), flags)
    score += _score_symptoms(f"{chief_complaint} {data.get('triage_notes') or ''}", flags)
    return {'score': score, 'level': level_for(score, flags), 'red_flags': flags}


def priority_order(level: str) -> int:
    return LEVEL_ORDER.get(level, UNTRIAGED_ORDER)
