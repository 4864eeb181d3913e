import io

import pandas as pd
from django.core.files.uploadedfile import SimpleUploadedFile
from rest_framework import status
from rest_framework.test import APITestCase

from clinic.models import DrugFormulary, MasterDataAudit, TestCatalog, User
from clinic.tests.helpers import client_for, make_department, make_drug, make_user, make_ward

DRUG_CSV = (
    'name,generic_name,strength,form,atc_code,stock_quantity,reorder_level,unit_price\n'
    'Amoxicillin,amoxicillin,500mg,capsule,J01CA04,100,10,15.00\n'
    'Metformin,metformin,500mg,tablet,A10BA02,200,20,8.00\n'
    ',cetirizine,10mg,pill,BAD,-1,5,2.00\n'
)


class DrugImportTests(APITestCase):
    def setUp(self) -> None:
        self.client = client_for(make_user('admin1', User.ROLE_ADMIN))

    def upload(self, url, name, content, content_type='text/csv'):
        return self.client.post(url, {'file': SimpleUploadedFile(name, content, content_type=content_type)},
                                format='multipart')

    def test_rows_are_imported_skipped_or_reported(self):
        make_drug('Amoxicillin')
        r = self.upload('/api/drugs/import', 'drugs.csv', DRUG_CSV.encode())
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual(r.data['imported'], 1)
        self.assertEqual(r.data['skipped'], 1)
        self.assertEqual(len(r.data['errors']), 1)
        error = r.data['errors'][0]
        self.assertTrue(error.startswith('Row 4: Drug name is required'))
        self.assertIn('ATC code must follow the format: A00AA00', error)
        self.assertIn('Stock quantity must be greater than or equal to 0', error)
        self.assertTrue(DrugFormulary.objects.filter(name='Metformin').exists())
        self.assertTrue(MasterDataAudit.objects.filter(action='bulk_imported').exists())

    def test_non_finite_numbers_are_row_errors(self):
        header = 'name,generic_name,strength,form,atc_code,stock_quantity,reorder_level,unit_price\n'
        good = 'Metformin,metformin,500mg,tablet,A10BA02,200,20,8.00\n'
        bad_rows = [
            'Cetirizine,cetirizine,10mg,tablet,R06AE07,inf,5,2.00\n',
            'Cetirizine,cetirizine,10mg,tablet,R06AE07,10,5,NaN\n',
            'Cetirizine,cetirizine,10mg,tablet,R06AE07,10,5,Infinity\n',
            'Cetirizine,cetirizine,10mg,tablet,R06AE07,10,5,99999999999\n',
        ]
        for bad in bad_rows:
            DrugFormulary.objects.all().delete()
            r = self.upload('/api/drugs/import', 'drugs.csv', (header + good + bad).encode())
            self.assertEqual(r.status_code, status.HTTP_200_OK, bad)
            self.assertEqual(r.data['imported'], 1)
            self.assertEqual(len(r.data['errors']), 1)
            self.assertTrue(r.data['errors'][0].startswith('Row 3: '))
            self.assertFalse(DrugFormulary.objects.filter(name='Cetirizine').exists())

    def test_xlsx_tests_import(self):
        buffer = io.BytesIO()
        pd.DataFrame([
            {'Name': 'Malaria Parasites', 'Code': 'mps', 'Category': 'Parasitology', 'Price': '300',
             'Turnaround Time': '2'},
            {'Name': 'Bad TAT', 'Code': 'BAD', 'Category': 'Chemistry', 'Price': '100', 'Turnaround Time': '0'},
        ]).to_excel(buffer, index=False, engine='openpyxl')
        r = self.upload('/api/tests/import', 'tests.xlsx', buffer.getvalue(),
                        content_type='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet')
        self.assertEqual(r.data['imported'], 1)
        self.assertEqual(r.data['errors'], ['Row 3: Turnaround time must be at least 1 hour'])
        self.assertEqual(TestCatalog.objects.get().code, 'MPS')

    def test_unsupported_extension_is_rejected(self):
        r = self.upload('/api/drugs/import', 'drugs.txt', DRUG_CSV.encode(), content_type='text/plain')
        self.assertEqual(r.status_code, 422)
        self.assertEqual(r.data['error']['code'], 'MASTER_DATA_VALIDATION_ERROR')
        self.assertIn('file', r.data['error']['details'])

    def test_only_admins_import(self):
        pharmacist = client_for(make_user('ph1', User.ROLE_PHARMACIST))
        r = pharmacist.post('/api/drugs/import',
                            {'file': SimpleUploadedFile('drugs.csv', DRUG_CSV.encode(), content_type='text/csv')},
                            format='multipart')
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)


class ExportTests(APITestCase):
    def setUp(self) -> None:
        self.nurse = client_for(make_user('nurse1', User.ROLE_NURSE))
        make_ward(make_department(), beds=3)

    def test_ward_export_formats(self):
        expected = {
            'csv': 'text/csv',
            'xlsx': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
            'pdf': 'application/pdf',
        }
        for fmt, content_type in expected.items():
            r = self.nurse.get('/api/wards/export', {'format': fmt})
            self.assertEqual(r.status_code, 200, fmt)
            self.assertTrue(r['Content-Type'].startswith(content_type))
            self.assertIn(f'wards.{fmt}', r['Content-Disposition'])

    def test_ward_csv_has_one_row_per_ward(self):
        r = self.nurse.get('/api/wards/export', {'format': 'csv'})
        df = pd.read_csv(io.StringIO(r.content.decode()))
        self.assertEqual(len(df), 1)
        self.assertEqual(df.iloc[0]['Code'], 'W-GEN')

    def test_unknown_format_is_a_validation_error(self):
        r = self.nurse.get('/api/wards/export', {'format': 'docx'})
        self.assertEqual(r.status_code, 400)

    def test_revenue_report_is_for_cashiers(self):
        self.assertEqual(self.nurse.get('/api/reports/revenue').status_code, 403)
        cashier = client_for(make_user('cash1', User.ROLE_CASHIER))
        r = cashier.get('/api/reports/revenue', {'format': 'csv'})
        self.assertEqual(r.status_code, 200)
        self.assertTrue(r['Content-Type'].startswith('text/csv'))
