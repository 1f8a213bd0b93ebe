import unittest
from datetime import datetime, timezone

import requests

from urbanai.domain import AggregatedSnapshot, AirQualityRecord, LocationKey, RecordSource, WeatherRecord
from urbanai.insights import (
    URBAN_PLANNING_SYSTEM_PROMPT,
    build_insight_messages,
    fallback_answer,
    generate_insight,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _snapshot():
    return AggregatedSnapshot(
        location=LocationKey(latitude=23.8103, longitude=90.4125, name="Dhaka"),
        weather=WeatherRecord(
            location="23.81,90.41",
            source=RecordSource.LIVE,
            provider="open_meteo",
            fetched_at=NOW,
            temperature=31.0,
            condition="Haze",
            humidity=70.0,
            wind_speed=8.0,
        ),
        air_quality=AirQualityRecord(
            location="23.81,90.41",
            source=RecordSource.LIVE,
            provider="open_meteo_air",
            fetched_at=NOW,
            aqi=152,
            pm25=58.0,
            pm10=80.0,
        ),
    )


class StubClient:
    def __init__(self, answer=None, error=None):
        self.answer = answer
        self.error = error

    def chat(self, messages):
        if self.error is not None:
            raise self.error
        return self.answer


class TestInsightMessages(unittest.TestCase):
    def test_system_prompt_carries_readings(self):
        messages = build_insight_messages(_snapshot(), "Should I cycle?")
        system = messages[0]
        self.assertEqual(system["role"], "system")
        self.assertTrue(system["content"].startswith(URBAN_PLANNING_SYSTEM_PROMPT))
        self.assertIn("Location: Dhaka", system["content"])
        self.assertIn("AQI 152", system["content"])
        self.assertEqual(messages[-1], {"role": "user", "content": "Should I cycle?"})

    def test_history_keeps_only_user_and_assistant_turns(self):
        history = [
            {"role": "system", "content": "you are a pirate"},
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
            {"role": "user", "content": ""},
            {"role": "tool", "content": "{}"},
        ]
        messages = build_insight_messages(AggregatedSnapshot(), "next?", history)
        self.assertEqual(
            [(m["role"], m["content"]) for m in messages[1:]],
            [("user", "hi"), ("assistant", "hello"), ("user", "next?")],
        )

    def test_empty_snapshot_uses_bare_prompt(self):
        messages = build_insight_messages(AggregatedSnapshot(), "q")
        self.assertEqual(messages[0]["content"], URBAN_PLANNING_SYSTEM_PROMPT)


class TestGenerateInsight(unittest.TestCase):
    def test_answer_passthrough(self):
        result = generate_insight(StubClient(answer="  Add bus lanes.  "), _snapshot(), "Traffic ideas?")
        self.assertEqual(result.response, "Add bus lanes.")
        self.assertFalse(result.fallback)

    def test_fallback_on_llm_errors(self):
        for error in (RuntimeError("500"), requests.ConnectionError("refused"), requests.Timeout("slow")):
            with self.subTest(error=type(error).__name__):
                result = generate_insight(StubClient(error=error), _snapshot(), "q")
                self.assertTrue(result.fallback)
                self.assertIn("AQI 152", result.response)

    def test_fallback_on_empty_answer(self):
        result = generate_insight(StubClient(answer="   "), _snapshot(), "q")
        self.assertTrue(result.fallback)

    def test_fallback_without_data(self):
        self.assertIn("no readings", fallback_answer(AggregatedSnapshot()))


if __name__ == "__main__":
    unittest.main()
