#!/usr/bin/env python3
"""
Treatment Sheet API
REST endpoints for dose calculation, record validation, premedication
grouping and solvent compatibility
"""

from flask import Blueprint, request, jsonify
import logging

from pydantic import ValidationError

from dosing_engine.error_codes import ErrorLogger, PreconditionViolation
from dosing_engine.record_validator import structural_issues
from dosing_engine.schema import GroupingState
from services.treatment_service import create_treatment_service

logger = logging.getLogger(__name__)
error_logger = ErrorLogger('treatment_api')

# Create Blueprint
treatment_api = Blueprint('treatment_api', __name__, url_prefix='/api/treatment')

# Initialize service
treatment_service = create_treatment_service()


def _precondition_response(e: PreconditionViolation):
    error_logger.log_error(e, logging.WARNING)
    return jsonify(e.to_dict()), 400


@treatment_api.route('/doses', methods=['POST'])
def calculate_doses():
    """
    Calculate doses for a regimen

    Request JSON:
    {
        "regimen": {"id": "carbo-pacli", "name": "Carboplatin/Paclitaxel",
                    "schedule": "q3w",
                    "drugs": [{"name": "Carboplatin", "dosage": "AUC 5",
                               "unit": "AUC", "route": "IV"}]},
        "patient": {"weight_kg": 70, "height_cm": 170, "age_years": 60,
                    "sex": "F", "bsa_m2": 1.8, "creatinine_clearance": 80}
    }
    """
    try:
        data = request.get_json(silent=True)

        if not data:
            return jsonify({'error': 'No JSON data provided'}), 400
        if 'regimen' not in data or 'patient' not in data:
            return jsonify({'error': 'regimen and patient are required'}), 400

        report = treatment_service.calculate_doses(data['regimen'], data['patient'])
        return jsonify(report.model_dump(mode='json'))

    except PreconditionViolation as e:
        return _precondition_response(e)
    except Exception as e:
        logger.error(f"Error in dose calculation: {e}")
        return jsonify({
            'error': 'Internal server error',
            'message': str(e)
        }), 500


@treatment_api.route('/validate', methods=['POST'])
def validate_record():
    """Validate an assembled treatment record (TreatmentRecord JSON)"""
    try:
        data = request.get_json(silent=True)

        if not data:
            return jsonify({'error': 'No JSON data provided'}), 400

        result = treatment_service.validate_record(data)
        return jsonify(result.model_dump(mode='json'))

    except PreconditionViolation as e:
        return _precondition_response(e)
    except Exception as e:
        logger.error(f"Error in record validation: {e}")
        return jsonify({
            'error': 'Internal server error',
            'message': str(e)
        }), 500


@treatment_api.route('/grouping/validate', methods=['POST'])
def validate_grouping():
    """Validate premedication groups (GroupingState JSON)"""
    try:
        data = request.get_json(silent=True)

        if not data:
            return jsonify({'error': 'No JSON data provided'}), 400

        try:
            state = GroupingState.model_validate(data)
        except ValidationError as e:
            result = structural_issues(e, prefix='premedications')
            return jsonify(result.model_dump(mode='json'))

        result = treatment_service.validate_grouping(state)
        return jsonify(result.model_dump(mode='json'))

    except Exception as e:
        logger.error(f"Error in grouping validation: {e}")
        return jsonify({
            'error': 'Internal server error',
            'message': str(e)
        }), 500


@treatment_api.route('/grouping/apply', methods=['POST'])
def apply_grouping_action():
    """
    Apply one grouping action and return the new state

    Request JSON:
    {
        "state": {"groups": [], "individual": [...]},
        "action": "assign_agent",
        "params": {"name": "Ondansetron", "group_id": "pev-1"}
    }
    """
    try:
        data = request.get_json(silent=True)

        if not data:
            return jsonify({'error': 'No JSON data provided'}), 400

        action = data.get('action')
        if not action:
            return jsonify({'error': 'action is required'}), 400

        try:
            state = GroupingState.model_validate(data.get('state') or {})
        except ValidationError as e:
            result = structural_issues(e, prefix='state')
            return jsonify(result.model_dump(mode='json')), 400

        new_state = treatment_service.apply_grouping_action(state, action, **(data.get('params') or {}))
        return jsonify({
            'state': new_state.model_dump(mode='json', by_alias=True),
            'validation': treatment_service.validate_grouping(new_state).model_dump(mode='json')
        })

    except PreconditionViolation as e:
        return _precondition_response(e)
    except TypeError as e:
        return jsonify({'error': 'Invalid parameters for action', 'message': str(e)}), 400
    except Exception as e:
        logger.error(f"Error applying grouping action: {e}")
        return jsonify({
            'error': 'Internal server error',
            'message': str(e)
        }), 500


@treatment_api.route('/compatibility', methods=['POST'])
def check_compatibility():
    """
    Check a drug/solvent pairing

    Request JSON:
    {"drug": "Oxaliplatin", "solvent": "Normal Saline 0.9%"}
    """
    try:
        data = request.get_json(silent=True)

        if not data:
            return jsonify({'error': 'No JSON data provided'}), 400

        drug = data.get('drug')
        if not drug:
            return jsonify({'error': 'drug is required'}), 400

        check = treatment_service.check_compatibility(drug, data.get('solvent'))
        return jsonify({
            'drug': drug,
            'solvent': data.get('solvent'),
            'is_valid': check.is_valid,
            'error': check.error,
            'alternatives': check.alternatives,
            'selectable_solvents': treatment_service.selectable_solvents(drug)
        })

    except Exception as e:
        logger.error(f"Error in compatibility check: {e}")
        return jsonify({
            'error': 'Internal server error',
            'message': str(e)
        }), 500


@treatment_api.route('/health', methods=['GET'])
def health():
    config = treatment_service.config
    return jsonify({
        'status': 'healthy',
        'compatibility_rules': len(config.solvent_compatibility),
        'drug_limits': len(config.drug_limits),
        'known_solvents': len(config.known_solvents)
    })
