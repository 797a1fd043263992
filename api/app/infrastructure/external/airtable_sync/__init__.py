"""
Motor de reconciliación one-way: Airtable -> colecciones de documentos.

Se ejecuta desde el API (admin, cron, webhook), desde el scheduler y desde
el CLI; todas las vías pasan por el mismo lease por entidad.

Objetivos de diseño:
- Exclusión mutua entre procesos (lease con compare-and-set atómico).
- Nunca dejar una colección a medio migrar (checkpoint/rollback).
- Cuota de Airtable respetada aun con descargas en paralelo.
- Una entrada de auditoría por corrida, con éxito o sin él.
"""
