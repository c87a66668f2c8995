#!/usr/bin/env python3
"""
API tests for the treatment sheet endpoints
"""

import pytest
import sys
import os

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app import create_app

REGIMEN = {
    "id": "carbo-pacli",
    "name": "Carboplatin/Paclitaxel",
    "drugs": [
        {"name": "Carboplatin", "dosage": "AUC 5", "unit": "AUC", "route": "IV"},
        {"name": "Paclitaxel", "dosage": "175", "unit": "mg/m²", "route": "IV"},
    ],
}

PATIENT = {
    "weight_kg": 70, "height_cm": 170, "age_years": 60, "sex": "F",
    "bsa_m2": 1.8, "creatinine_clearance": 80,
}

AGENT = {"name": "Ondansetron", "category": "antiemetic", "class": "5-HT3 antagonist",
         "dosage": "8", "unit": "mg", "route": "IV"}


class TestTreatmentAPI:

    def setup_method(self):
        app = create_app()
        app.config['TESTING'] = True
        self.client = app.test_client()

    def test_health(self):
        response = self.client.get('/api/treatment/health')
        assert response.status_code == 200
        data = response.get_json()
        assert data['status'] == 'healthy'
        assert data['compatibility_rules'] > 0

    def test_doses(self):
        response = self.client.post('/api/treatment/doses', json={'regimen': REGIMEN, 'patient': PATIENT})
        assert response.status_code == 200
        data = response.get_json()
        doses = {d['name']: d['final_dose'] for d in data['calculated_drugs']}
        assert doses == {'Carboplatin': 525, 'Paclitaxel': 315}
        assert data['result']['is_valid'] is True

    def test_doses_unknown_unit_is_reported(self):
        regimen = dict(REGIMEN, drugs=REGIMEN['drugs'] + [
            {"name": "Mystery", "dosage": "10", "unit": "mg/kg/dose", "route": "IV"}
        ])
        response = self.client.post('/api/treatment/doses', json={'regimen': regimen, 'patient': PATIENT})
        data = response.get_json()
        assert response.status_code == 200
        assert len(data['calculated_drugs']) == 2
        assert data['result']['errors'][0]['field'] == 'regimen.drugs[2].unit'

    def test_missing_body(self):
        for path in ('/doses', '/validate', '/grouping/validate', '/compatibility', '/grouping/apply'):
            response = self.client.post(f'/api/treatment{path}')
            assert response.status_code == 400

    def test_doses_requires_both_parts(self):
        response = self.client.post('/api/treatment/doses', json={'regimen': REGIMEN})
        assert response.status_code == 400

    def test_validate_record(self):
        record = {
            'patient': PATIENT,
            'regimen': REGIMEN,
            'premedications': {'groups': [], 'individual': [AGENT]},
        }
        response = self.client.post('/api/treatment/validate', json=record)
        assert response.status_code == 200
        assert response.get_json()['is_valid'] is True

    def test_validate_record_structural_errors(self):
        response = self.client.post('/api/treatment/validate', json={'regimen': REGIMEN})
        data = response.get_json()
        assert data['is_valid'] is False
        assert data['errors'][0]['field'] == 'patient'

    def test_grouping_validate(self):
        state = {'groups': [{'id': 'pev-1'}], 'individual': [AGENT]}
        response = self.client.post('/api/treatment/grouping/validate', json=state)
        data = response.get_json()
        assert [e['message'] for e in data['errors']] == [
            'PEV 1: no solvent selected', 'PEV 1: no medications assigned'
        ]

    def test_grouping_apply(self):
        state = {'groups': [{'id': 'pev-1', 'solvent': 'Normal Saline 0.9%'}], 'individual': [AGENT]}
        response = self.client.post('/api/treatment/grouping/apply', json={
            'state': state,
            'action': 'assign_agent',
            'params': {'name': 'Ondansetron', 'group_id': 'pev-1'},
        })
        assert response.status_code == 200
        data = response.get_json()
        assert data['state']['groups'][0]['medications'][0]['solvent'] == 'Normal Saline 0.9%'
        assert data['state']['individual'] == []
        assert data['validation']['is_valid'] is True

    def test_grouping_apply_unknown_agent(self):
        response = self.client.post('/api/treatment/grouping/apply', json={
            'state': {'groups': [{'id': 'pev-1'}], 'individual': []},
            'action': 'assign_agent',
            'params': {'name': 'Aprepitant', 'group_id': 'pev-1'},
        })
        assert response.status_code == 400
        assert response.get_json()['error_code'] == 'GRP_001'

    def test_grouping_apply_duplicate_group(self):
        response = self.client.post('/api/treatment/grouping/apply', json={
            'state': {'groups': [{'id': 'pev-1'}], 'individual': []},
            'action': 'create_group',
            'params': {'group_id': 'pev-1'},
        })
        assert response.status_code == 400
        data = response.get_json()
        assert data['error_code'] == 'GRP_006'
        assert data['description'] == 'Grouping operation created a group id that already exists'

    def test_grouping_apply_bad_params(self):
        response = self.client.post('/api/treatment/grouping/apply', json={
            'state': {}, 'action': 'delete_group', 'params': {'unexpected': 1},
        })
        assert response.status_code == 400

    def test_compatibility(self):
        response = self.client.post('/api/treatment/compatibility',
                                    json={'drug': 'Oxaliplatin', 'solvent': 'Normal Saline 0.9%'})
        data = response.get_json()
        assert data['is_valid'] is False
        assert data['alternatives'] == ['Dextrose 5%']
        assert 'Oxaliplatin is not compatible with Normal Saline 0.9%' in data['error']

    @pytest.mark.parametrize("drug", ["Ondansetron", "Dexamethasone"])
    def test_compatibility_without_rule(self, drug):
        response = self.client.post('/api/treatment/compatibility',
                                    json={'drug': drug, 'solvent': 'Dextrose 5%'})
        data = response.get_json()
        assert data['is_valid'] is True
        assert data['selectable_solvents'] == [
            'Normal Saline 0.9%', 'Dextrose 5%', 'Ringer Solution', 'Water for Injection'
        ]
