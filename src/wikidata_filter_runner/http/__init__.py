"""HTTP transfers: dump download, SPARQL property list, archive upload."""
