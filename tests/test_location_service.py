from __future__ import annotations

import unittest
from uuid import uuid4

from gtiq.models import Company
from gtiq.services.location import distance_m, evaluate_geofence


class LocationServiceTests(unittest.TestCase):
    def test_distance_m_zero_for_same_point(self) -> None:
        value = distance_m(40.4168, -3.7038, 40.4168, -3.7038)
        self.assertAlmostEqual(value, 0.0, places=6)

    def test_distance_m_known_reference(self) -> None:
        # One degree of longitude on the equator.
        value = distance_m(0.0, 0.0, 0.0, 1.0)
        self.assertAlmostEqual(value, 111_195, delta=300)

    def test_distance_m_is_symmetric(self) -> None:
        v1 = distance_m(40.4168, -3.7038, 41.3874, 2.1686)
        v2 = distance_m(41.3874, 2.1686, 40.4168, -3.7038)
        self.assertAlmostEqual(v1, v2, places=6)


class GeofenceTests(unittest.TestCase):
    def _company(self, radius: int | None = None) -> Company:
        return Company(id=uuid4(), name="Acme", hq_lat=40.4168, hq_lng=-3.7038, geofence_radius_m=radius)

    def test_missing_coordinates_give_empty_result(self) -> None:
        result = evaluate_geofence(self._company(), None, -3.7038)
        self.assertIsNone(result.distance_m)
        self.assertIsNone(result.is_within_geofence)

        result = evaluate_geofence(Company(id=uuid4(), name="No HQ"), 40.4168, -3.7038)
        self.assertIsNone(result.is_within_geofence)

    def test_point_near_hq_is_inside_default_radius(self) -> None:
        result = evaluate_geofence(self._company(), 40.4170, -3.7040)
        self.assertTrue(result.is_within_geofence)
        self.assertEqual(result.radius_m, 200)
        self.assertLess(result.distance_m, 200)

    def test_company_radius_overrides_default(self) -> None:
        # Roughly 1.1 km north of the HQ.
        result = evaluate_geofence(self._company(radius=2000), 40.4268, -3.7038)
        self.assertTrue(result.is_within_geofence)

        result = evaluate_geofence(self._company(radius=500), 40.4268, -3.7038)
        self.assertFalse(result.is_within_geofence)
        self.assertEqual(result.radius_m, 500)


if __name__ == "__main__":
    unittest.main()
