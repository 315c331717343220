"""
Household Consumption Emissions and Social Class Study.

Research Question: How do consumption-based greenhouse gas footprints differ
between social classes defined by income and education?

Pipeline:
- Expenditure codes are bridged to COICOP categories (fuzzy label match, then review)
- Category emissions are divided by weighted annual expenditure into intensities
- Intensities are attributed back to each household's expenditure
- Missing education is multiply imputed (predictive mean matching)
- Households are assigned to classes; survey estimates are pooled across imputations

Key files:
- src/bridge.py: Code bridge proposal and validation
- src/multipliers.py: Emission intensities per category
- src/attribution.py: Household emissions and conservation check
- src/imputation.py: Education imputation and household reduction
- src/social_class.py: Class decision table
- src/reporting.py: Pooled estimates, comparisons, figures
"""
