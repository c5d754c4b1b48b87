"""
Starter medication reference loaded by scripts/init_db.py.

Reference text for classroom use only; local protocols take precedence.
"""
from __future__ import annotations

COMMON_EMS_MEDICATIONS: list[dict] = [
    {
        "name": "Epinephrine",
        "brand_names": ["Adrenalin", "EpiPen"],
        "drug_class": "Sympathomimetic / Vasopressor",
        "indications": ["Cardiac arrest", "Anaphylaxis", "Severe bronchospasm", "Symptomatic bradycardia"],
        "contraindications": ["None in cardiac arrest", "Hypertension (relative)"],
        "side_effects": ["Tachycardia", "Hypertension", "Anxiety", "Tremor"],
        "routes": ["IV/IO", "IM", "SubQ"],
        "adult_dose": "Arrest: 1 mg IV/IO q3-5 min | Anaphylaxis: 0.3-0.5 mg IM (1 mg/mL)",
        "pediatric_dose": "Arrest: 0.01 mg/kg IV/IO (max 1 mg) | Anaphylaxis: 0.01 mg/kg IM (max 0.3 mg)",
        "onset": "IV: 1-2 min | IM: 5-10 min",
        "duration": "IV: 5-10 min | IM: 20-30 min",
        "concentration": "0.1 mg/mL (IV/IO), 1 mg/mL (IM)",
        "dose_per_kg": "0.0100",
        "max_dose": "1 mg per dose (arrest)",
        "special_notes": "Two concentrations in circulation. Confirm the concentration before every dose.",
    },
    {
        "name": "Amiodarone",
        "brand_names": ["Cordarone", "Nexterone"],
        "drug_class": "Antidysrhythmic (Class III)",
        "indications": ["VF / pulseless VT", "Stable wide-complex tachycardia"],
        "contraindications": ["Cardiogenic shock", "Second/third-degree AV block", "Marked sinus bradycardia"],
        "side_effects": ["Hypotension", "Bradycardia", "Prolonged QT"],
        "routes": ["IV/IO"],
        "adult_dose": "VF/pVT: 300 mg IV/IO push, then 150 mg | Stable VT: 150 mg over 10 min",
        "pediatric_dose": "5 mg/kg IV/IO",
        "onset": "IV: 1-2 min",
        "duration": "Variable",
        "concentration": "50 mg/mL",
        "dose_per_kg": "5.0000",
        "max_dose": "300 mg initial, 150 mg repeat",
        "special_notes": "Dilute in D5W for slow infusion. Use a large-bore line.",
    },
    {
        "name": "Adenosine",
        "brand_names": ["Adenocard"],
        "drug_class": "Antidysrhythmic",
        "indications": ["Stable narrow-complex SVT"],
        "contraindications": ["Second/third-degree AV block", "Sick sinus syndrome", "Pre-excited atrial fibrillation"],
        "side_effects": ["Transient asystole", "Chest pressure", "Flushing", "Dyspnea"],
        "routes": ["IV (rapid push)", "IO"],
        "adult_dose": "6 mg rapid IV push; 12 mg if no conversion (may repeat once)",
        "pediatric_dose": "0.1 mg/kg rapid IV (max 6 mg); then 0.2 mg/kg (max 12 mg)",
        "onset": "Seconds",
        "duration": "10-30 seconds",
        "concentration": "3 mg/mL",
        "dose_per_kg": "0.1000",
        "max_dose": "12 mg per dose",
        "special_notes": "Push fast through the most proximal site followed by a 20 mL saline flush.",
    },
    {
        "name": "Atropine",
        "brand_names": ["AtroPen"],
        "drug_class": "Anticholinergic",
        "indications": ["Symptomatic bradycardia", "Organophosphate poisoning"],
        "contraindications": ["Tachycardia (relative)", "Angle-closure glaucoma (relative)"],
        "side_effects": ["Tachycardia", "Dry mouth", "Blurred vision", "Urinary retention"],
        "routes": ["IV/IO", "IM"],
        "adult_dose": "Bradycardia: 1 mg IV q3-5 min | Organophosphate: 2-4 mg IV, repeat until secretions dry",
        "pediatric_dose": "0.02 mg/kg IV/IO (min 0.1 mg, max 0.5 mg)",
        "onset": "IV: 1-2 min",
        "duration": "2-6 hours",
        "concentration": "0.1 mg/mL",
        "dose_per_kg": "0.0200",
        "max_dose": "3 mg total (bradycardia)",
        "special_notes": "For organophosphates the endpoint is drying of secretions, not heart rate.",
    },
    {
        "name": "Albuterol",
        "brand_names": ["ProAir", "Ventolin"],
        "drug_class": "Beta-2 Agonist / Bronchodilator",
        "indications": ["Asthma exacerbation", "COPD exacerbation", "Bronchospasm", "Hyperkalemia (adjunct)"],
        "contraindications": ["Known hypersensitivity"],
        "side_effects": ["Tachycardia", "Tremor", "Hypokalemia"],
        "routes": ["Nebulized", "MDI"],
        "adult_dose": "2.5 mg nebulized, may repeat q20 min",
        "pediatric_dose": "2.5 mg nebulized",
        "onset": "5-15 min",
        "duration": "3-6 hours",
        "concentration": "2.5 mg / 3 mL",
        "dose_per_kg": None,
        "max_dose": None,
        "special_notes": "Often combined with ipratropium.",
    },
    {
        "name": "Fentanyl",
        "brand_names": ["Sublimaze"],
        "drug_class": "Opioid Analgesic",
        "indications": ["Moderate to severe pain"],
        "contraindications": ["Respiratory depression", "Hypotension"],
        "side_effects": ["Respiratory depression", "Chest wall rigidity (rapid high dose)", "Nausea"],
        "routes": ["IV/IO", "IN", "IM"],
        "adult_dose": "1 mcg/kg IV/IN, titrate",
        "pediatric_dose": "1 mcg/kg IV/IN",
        "onset": "IV: 1-2 min | IN: 5-10 min",
        "duration": "30-60 min",
        "concentration": "50 mcg/mL",
        "dose_per_kg": "1.0000",
        "max_dose": "100 mcg per dose",
        "special_notes": "Dose is in mcg/kg. Naloxone reverses.",
    },
    {
        "name": "Midazolam",
        "brand_names": ["Versed"],
        "drug_class": "Benzodiazepine / Sedative",
        "indications": ["Seizures", "Procedural sedation", "Severe agitation"],
        "contraindications": ["Hypotension", "Respiratory depression"],
        "side_effects": ["Respiratory depression", "Hypotension", "Amnesia"],
        "routes": ["IV/IO", "IM", "IN"],
        "adult_dose": "Seizure: 10 mg IM or 0.1 mg/kg IV",
        "pediatric_dose": "Seizure: 0.2 mg/kg IM/IN (max 10 mg)",
        "onset": "IV: 2-5 min | IM: 10-15 min",
        "duration": "1-2 hours",
        "concentration": "5 mg/mL",
        "dose_per_kg": "0.1000",
        "max_dose": "10 mg",
        "special_notes": "Potentiated by opioids. Flumazenil reverses.",
    },
    {
        "name": "Naloxone",
        "brand_names": ["Narcan"],
        "drug_class": "Opioid Antagonist",
        "indications": ["Opioid overdose with respiratory depression"],
        "contraindications": ["Known hypersensitivity"],
        "side_effects": ["Acute withdrawal", "Agitation", "Vomiting"],
        "routes": ["IV/IO", "IM", "IN"],
        "adult_dose": "0.4-2 mg IV/IM/IN, repeat q2-3 min",
        "pediatric_dose": "0.1 mg/kg (max 2 mg)",
        "onset": "IV: 1-2 min | IN/IM: 3-5 min",
        "duration": "30-90 min",
        "concentration": "0.4 mg/mL; 4 mg/0.1 mL IN",
        "dose_per_kg": "0.1000",
        "max_dose": "2 mg per dose",
        "special_notes": "Shorter acting than most opioids. Titrate to breathing, not full reversal.",
    },
    {
        "name": "Dextrose 10%",
        "brand_names": ["D10"],
        "drug_class": "Carbohydrate / Antihypoglycemic",
        "indications": ["Hypoglycemia"],
        "contraindications": ["Hyperglycemia"],
        "side_effects": ["Tissue necrosis (extravasation)", "Hyperglycemia"],
        "routes": ["IV/IO"],
        "adult_dose": "25 g (250 mL) IV, titrate to glucose",
        "pediatric_dose": "5 mL/kg IV/IO",
        "onset": "1-3 min",
        "duration": "Variable",
        "concentration": "10 g / 100 mL",
        "dose_per_kg": None,
        "max_dose": "25 g",
        "special_notes": "Confirm line patency before and during infusion.",
    },
    {
        "name": "Aspirin",
        "brand_names": ["Bayer"],
        "drug_class": "Antiplatelet",
        "indications": ["Suspected acute coronary syndrome"],
        "contraindications": ["Active GI bleeding", "Aspirin allergy"],
        "side_effects": ["GI upset", "Bleeding"],
        "routes": ["PO (chewed)"],
        "adult_dose": "324 mg chewed",
        "pediatric_dose": "Not indicated",
        "onset": "15-30 min",
        "duration": "Days (platelet lifespan)",
        "concentration": "81 mg tablets",
        "dose_per_kg": None,
        "max_dose": "324 mg",
        "special_notes": None,
    },
    {
        "name": "Nitroglycerin",
        "brand_names": ["Nitrostat"],
        "drug_class": "Nitrate / Vasodilator",
        "indications": ["Ischemic chest pain", "Acute pulmonary edema"],
        "contraindications": ["SBP below 90 mmHg", "Recent PDE-5 inhibitor use", "Right ventricular infarct"],
        "side_effects": ["Hypotension", "Headache", "Reflex tachycardia"],
        "routes": ["SL"],
        "adult_dose": "0.4 mg SL q5 min, up to 3 doses",
        "pediatric_dose": "Not indicated",
        "onset": "1-3 min",
        "duration": "30-60 min",
        "concentration": "0.4 mg tablet / spray",
        "dose_per_kg": None,
        "max_dose": "3 doses",
        "special_notes": "Obtain a 12-lead and IV access before the first dose when possible.",
    },
    {
        "name": "Ondansetron",
        "brand_names": ["Zofran"],
        "drug_class": "Antiemetic (5-HT3 antagonist)",
        "indications": ["Nausea and vomiting"],
        "contraindications": ["Known prolonged QT"],
        "side_effects": ["Headache", "QT prolongation"],
        "routes": ["IV", "IM", "ODT"],
        "adult_dose": "4 mg IV/IM/ODT, may repeat once",
        "pediatric_dose": "0.15 mg/kg IV (max 4 mg)",
        "onset": "IV: under 5 min",
        "duration": "4-8 hours",
        "concentration": "2 mg/mL",
        "dose_per_kg": "0.1500",
        "max_dose": "8 mg",
        "special_notes": None,
    },
]
