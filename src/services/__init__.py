"""
Services Layer for the Eligibility Verification System.

- edi: X12 270/271/999 codec, CORE SOAP envelope, benefit interpretation
- validation: patient query validation and record reconciliation
"""
