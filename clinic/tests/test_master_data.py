"""
Master data endpoint tests: departments, wards and beds, the test
catalogue and the drug formulary, including their error envelopes and
the cached list views.
"""
from rest_framework import status
from rest_framework.test import APITestCase

from clinic.models import Bed, Department, DrugFormulary, MasterDataAudit, StockMovement, User
from clinic.tests.helpers import client_for, make_department, make_drug, make_lab_test, make_user, make_ward


class DepartmentTests(APITestCase):
    def setUp(self) -> None:
        self.admin = make_user('admin1', User.ROLE_ADMIN)
        self.nurse = make_user('nurse1', User.ROLE_NURSE)
        self.client = client_for(self.admin)

    def test_create_uppercases_code_and_audits(self):
        r = self.client.post('/api/departments', {'code': 'card', 'name': 'Cardiology'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_201_CREATED)
        self.assertEqual(r.data['code'], 'CARD')
        audit = MasterDataAudit.objects.get(entity_type='department', action='created')
        self.assertEqual(audit.entity_id, r.data['id'])
        self.assertEqual(audit.user, self.admin)

    def test_duplicate_code_is_a_validation_error(self):
        make_department('CARD', 'Cardiology')
        r = self.client.post('/api/departments', {'code': 'card', 'name': 'Cardio 2'}, format='json')
        self.assertEqual(r.status_code, 422)
        self.assertEqual(r.data['error']['code'], 'MASTER_DATA_VALIDATION_ERROR')
        self.assertIn('code', r.data['error']['details'])

    def test_non_admin_cannot_write(self):
        r = client_for(self.nurse).post('/api/departments', {'code': 'X1', 'name': 'Xray'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(r.data['ok'], False)

    def test_referenced_department_cannot_be_deleted_or_deactivated(self):
        dept = make_department()
        make_ward(dept)
        r = self.client.delete(f'/api/departments/{dept.id}')
        self.assertEqual(r.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(r.data['error']['code'], 'DEPARTMENT_IN_USE')
        self.assertEqual(r.data['error']['details']['wards'], 1)
        self.assertTrue(r.data['error']['suggestions'])

        r = self.client.post(f'/api/departments/{dept.id}/toggle-status')
        self.assertEqual(r.status_code, status.HTTP_409_CONFLICT)
        dept.refresh_from_db()
        self.assertEqual(dept.status, Department.STATUS_ACTIVE)

    def test_unreferenced_department_toggles_and_deletes(self):
        dept = make_department()
        r = self.client.post(f'/api/departments/{dept.id}/toggle-status')
        self.assertEqual(r.data['status'], 'inactive')
        r = self.client.delete(f'/api/departments/{dept.id}')
        self.assertEqual(r.status_code, status.HTTP_204_NO_CONTENT)
        self.assertTrue(MasterDataAudit.objects.filter(entity_type='department', action='deleted').exists())

    def test_list_cache_is_invalidated_by_writes(self):
        make_department('AAA', 'Alpha')
        nurse = client_for(self.nurse)
        self.assertEqual(len(nurse.get('/api/departments').data), 1)
        self.client.post('/api/departments', {'code': 'BBB', 'name': 'Beta'}, format='json')
        self.assertEqual(len(nurse.get('/api/departments').data), 2)

    def test_missing_department_is_404_envelope(self):
        r = self.client.get('/api/departments/9999')
        self.assertEqual(r.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(r.data['error']['code'], 'RESOURCE_NOT_FOUND')


class WardAndBedTests(APITestCase):
    def setUp(self) -> None:
        self.admin = make_user('admin1', User.ROLE_ADMIN)
        self.nurse = make_user('nurse1', User.ROLE_NURSE)
        self.dept = make_department()

    def test_capacity_bounds(self):
        client = client_for(self.admin)
        payload = {'ward_code': 'W1', 'name': 'Ward One', 'department_id': self.dept.id, 'capacity': 500}
        r = client.post('/api/wards', payload, format='json')
        self.assertEqual(r.status_code, 422)
        self.assertIn('capacity', r.data['error']['details'])

        payload['capacity'] = 2
        r = client.post('/api/wards', payload, format='json')
        self.assertEqual(r.status_code, status.HTTP_201_CREATED)
        self.assertEqual(r.data['totalBeds'], 0)

    def test_capacity_cannot_drop_below_bed_count(self):
        ward = make_ward(self.dept, beds=3)
        r = client_for(self.admin).patch(f'/api/wards/{ward.id}', {'capacity': 2}, format='json')
        self.assertEqual(r.status_code, 422)
        self.assertIn('bed count (3)', r.data['error']['message'])

    def test_beds_cannot_exceed_capacity(self):
        ward = make_ward(self.dept, beds=2)
        r = client_for(self.admin).post(f'/api/wards/{ward.id}/beds', {'bed_number': 'X-9'}, format='json')
        self.assertEqual(r.status_code, 422)
        self.assertIn('maximum capacity', r.data['error']['message'])

    def test_occupied_bed_cannot_go_to_maintenance(self):
        ward = make_ward(self.dept, beds=1)
        bed = ward.beds.get()
        bed.status = Bed.STATUS_OCCUPIED
        bed.save()
        r = client_for(self.nurse).post(f'/api/beds/{bed.id}/status', {'status': 'maintenance'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(r.data['error']['code'], 'BED_OCCUPANCY_CONFLICT')
        self.assertEqual(r.data['error']['details']['type'], 'invalid_transition')

    def test_bed_status_change_updates_ward_stats(self):
        ward = make_ward(self.dept, beds=2)
        bed = ward.beds.first()
        nurse = client_for(self.nurse)
        self.assertEqual(nurse.get('/api/wards').data[0]['availableBeds'], 2)
        nurse.post(f'/api/beds/{bed.id}/status', {'status': 'cleaning'}, format='json')
        self.assertEqual(nurse.get('/api/wards').data[0]['availableBeds'], 1)


class TestCatalogueTests(APITestCase):
    def setUp(self) -> None:
        self.admin = make_user('admin1', User.ROLE_ADMIN)
        self.client = client_for(self.admin)
        self.test = make_lab_test(price='100.00')

    def test_significant_price_change_needs_force(self):
        r = self.client.post(f'/api/tests/{self.test.id}/price', {'price': '200.00'}, format='json')
        self.assertEqual(r.status_code, 422)
        self.assertEqual(r.data['error']['code'], 'INVALID_TEST_PRICE')
        self.assertEqual(r.data['error']['details']['type'], 'significant_change')

        r = self.client.post(f'/api/tests/{self.test.id}/price', {'price': '200.00', 'force': True}, format='json')
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.data['price'], '200.00')

    def test_price_precision_is_checked(self):
        r = self.client.post(f'/api/tests/{self.test.id}/price', {'price': '110.555'}, format='json')
        self.assertEqual(r.status_code, 422)
        self.assertEqual(r.data['error']['details']['type'], 'precision_error')

    def test_categories_are_distinct(self):
        make_lab_test(code='MPS', name='Malaria', category='Parasitology')
        make_lab_test(code='HB', name='Haemoglobin', category='Haematology')
        r = self.client.get('/api/tests/categories')
        self.assertEqual(sorted(r.data), ['Haematology', 'Parasitology'])


class DrugFormularyTests(APITestCase):
    def setUp(self) -> None:
        self.admin = make_user('admin1', User.ROLE_ADMIN)
        self.pharmacist = make_user('ph1', User.ROLE_PHARMACIST)

    def test_invalid_atc_code_is_rejected(self):
        payload = {'name': 'Metformin', 'strength': '500mg', 'form': 'tablet', 'unit_price': '8.00',
                   'atc_code': 'bad'}
        r = client_for(self.admin).post('/api/drugs', payload, format='json')
        self.assertEqual(r.status_code, 422)
        self.assertIn('atc_code', r.data['error']['details'])

    def test_negative_adjustment_is_a_stock_error(self):
        drug = make_drug(stock=5)
        r = client_for(self.pharmacist).post(f'/api/drugs/{drug.id}/adjust-stock',
                                             {'adjustment': -10, 'reason': 'expired'}, format='json')
        self.assertEqual(r.status_code, 422)
        error = r.data['error']
        self.assertEqual(error['code'], 'DRUG_STOCK_ERROR')
        self.assertEqual(error['details']['type'], 'negative_stock')
        self.assertEqual(error['details']['stock_status']['current_stock'], 5)

    def test_adjustment_records_movement(self):
        drug = make_drug(stock=5)
        r = client_for(self.pharmacist).post(f'/api/drugs/{drug.id}/adjust-stock',
                                             {'adjustment': 20, 'reason': 'delivery'}, format='json')
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.data['stockQuantity'], 25)
        movement = StockMovement.objects.get(drug=drug)
        self.assertEqual(movement.movement_type, StockMovement.TYPE_ADJUSTMENT)
        self.assertEqual(movement.balance_after, 25)

    def test_low_stock_list(self):
        make_drug('Paracetamol', stock=3, reorder_level=10)
        make_drug('Ibuprofen', stock=300)
        r = client_for(self.pharmacist).get('/api/drugs/low-stock')
        self.assertEqual([d['name'] for d in r.data], ['Paracetamol'])

    def test_negative_reorder_level_is_rejected(self):
        drug = make_drug()
        r = client_for(self.pharmacist).post(f'/api/drugs/{drug.id}/reorder-level',
                                             {'reorder_level': -1}, format='json')
        self.assertEqual(r.status_code, 422)
        self.assertEqual(r.data['error']['details']['type'], 'invalid_reorder_level')
        self.assertEqual(DrugFormulary.objects.get(pk=drug.pk).reorder_level, 10)
